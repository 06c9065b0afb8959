"""Tests for reading ingestion input files with pandas."""

from datetime import datetime, timezone

import pandas as pd
import pytest

from food_catalog.loaders import read_frame, records_from_frame
from food_catalog.schemas import MentionRecord


def frame(**overrides):
    row = {
        "restaurant_name": " Luigi's ",
        "dish_name": "Margherita",
        "source_id": "t1_a",
        "source_url": "https://reddit.com/r/food/1",
        "subreddit": "food",
        "created_at": "2024-05-01T12:00:00Z",
        "categories": "Pizza, Italian ,",
        "upvotes": "1,204",
        "is_menu_item": "no",
    }
    row.update(overrides)
    return pd.DataFrame([row])


class TestRecordsFromFrame:
    def test_csv_style_row(self):
        (record,) = records_from_frame(frame())

        assert record["restaurant_name"] == "Luigi's"
        assert record["categories"] == ["Pizza", "Italian"]
        assert record["dish_attributes"] == []
        assert record["upvotes"] == 1204
        assert record["is_menu_item"] is False
        assert record["latitude"] is None
        assert record["created_at"] == datetime(2024, 5, 1, 12, tzinfo=timezone.utc)
        assert "author" not in record
        MentionRecord.model_validate(record)

    def test_list_columns_pass_through(self):
        (record,) = records_from_frame(frame(dish_attributes=["Spicy", " "], latitude=40.7))
        assert record["dish_attributes"] == ["Spicy"]
        assert record["latitude"] == 40.7

    def test_duplicate_sources_dropped(self):
        df = pd.concat([frame(), frame()], ignore_index=True)
        assert len(records_from_frame(df)) == 1

    def test_missing_required_column(self):
        with pytest.raises(ValueError, match="subreddit"):
            records_from_frame(frame().drop(columns=["subreddit"]))


def test_read_jsonl(tmp_path):
    path = tmp_path / "mentions.jsonl"
    path.write_text(
        '{"restaurant_name": "Luigi\'s", "dish_name": "Margherita", "source_id": "t1_a", '
        '"source_url": "u", "subreddit": "food", "created_at": "2024-05-01T12:00:00Z", '
        '"categories": ["Pizza"]}\n'
    )
    (record,) = records_from_frame(read_frame(path))
    assert record["categories"] == ["Pizza"]
    assert record["is_menu_item"] is True


def test_read_csv(tmp_path):
    path = tmp_path / "mentions.csv"
    frame().to_csv(path, index=False)
    (record,) = records_from_frame(read_frame(path))
    assert record["source_id"] == "t1_a"
