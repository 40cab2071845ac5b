"""Per-day library summaries as pandas DataFrames."""

from __future__ import annotations

import pandas as pd

from ..storage.base import MediaStore


SUMMARY_COLUMNS = [
    "day_key",
    "items",
    "visible",
    "hidden",
    "geotagged",
    "clusters",
    "majority_label",
]


def library_summary(store: MediaStore) -> pd.DataFrame:
    """
    One row per calendar day with item, visibility, geotag and cluster counts.

    Days are listed newest first, matching the day list a browser shows.
    """
    rows = []
    for day_key in store.all_day_keys():
        items = store.items_for_day(day_key, include_hidden=True)
        group = store.get_day_group(day_key)
        hidden = sum(1 for item in items if item.hidden)
        rows.append({
            "day_key": day_key,
            "items": len(items),
            "visible": len(items) - hidden,
            "hidden": hidden,
            "geotagged": sum(1 for item in items if item.coordinate is not None),
            "clusters": len(group.cluster_ids) if group else 0,
            "majority_label": group.majority_label if group else None,
        })

    df = pd.DataFrame(rows, columns=SUMMARY_COLUMNS)
    return df.sort_values("day_key", ascending=False).reset_index(drop=True)
