"""
Vintage Merge Module for Boston Neighborhood Change Project

Joins the per-vintage neighborhood tables into one wide table, one row per
neighborhood and one column per vintage variable.
"""

import pandas as pd
from typing import List, Optional

from .errors import DuplicateKey, KeyTypeMismatch


def dropped_ids(tables: List[pd.DataFrame], on: str) -> List:
    """
    List the ids that a left join onto the first table would lose.

    Args:
        tables: Ordered vintage tables, anchor first
        on: Key column

    Returns:
        Ids present in a later table but absent from the anchor, in order
        of first appearance
    """
    anchor_ids = set(tables[0][on])
    lost = []
    for table in tables[1:]:
        for value in table[on]:
            if value not in anchor_ids and value not in lost:
                lost.append(value)
    return lost


def combine_vintages(tables: List[pd.DataFrame],
                     on: str,
                     labels: Optional[List[str]] = None) -> pd.DataFrame:
    """
    Left-join an ordered list of vintage tables onto the first one.

    Every id in the first (anchor) table is kept. A vintage with no row for
    an id leaves null values, not zeros: the neighborhood's population is
    unknown for that vintage, not zero.

    Ids that only appear in later tables are dropped. With one fixed
    neighborhood layer used for every vintage the anchor already holds every
    id, so nothing is lost; otherwise the dropped ids are printed.

    Args:
        tables: Ordered vintage tables, anchor first
        on: Key column shared by all tables
        labels: Names used to suffix clashing column names (defaults to
            the table's position)

    Returns:
        Merged DataFrame
    """
    tables = list(tables)
    if not tables:
        raise ValueError("No vintage tables to combine")

    if labels is None:
        labels = [str(i) for i in range(len(tables))]
    labels = [str(label) for label in labels]
    if len(labels) != len(tables):
        raise ValueError(f"Got {len(labels)} labels for {len(tables)} tables")

    for label, table in zip(labels, tables):
        if on not in table.columns:
            raise KeyError(f"Vintage table '{label}' has no '{on}' column")
        keys = table[on]
        bad = keys[keys.isna() | keys.duplicated(keep=False)]
        if len(bad) > 0:
            raise DuplicateKey(on, bad.drop_duplicates().tolist(),
                               where=f"vintage table '{label}'")

    anchor_dtype = tables[0][on].dtype
    for label, table in zip(labels[1:], tables[1:]):
        if table[on].dtype != anchor_dtype:
            raise KeyTypeMismatch(
                f"'{on}' is {table[on].dtype} in vintage table '{label}' "
                f"but {anchor_dtype} in the anchor table"
            )

    lost = dropped_ids(tables, on)
    if lost:
        print(f"  Warning: {len(lost)} ids missing from the anchor table are dropped: {lost[:10]}")

    merged = tables[0].copy()
    for label, table in zip(labels[1:], tables[1:]):
        clashes = [col for col in table.columns if col != on and col in merged.columns]
        if clashes:
            table = table.rename(columns={col: f"{col}_{label}" for col in clashes})
        merged = merged.merge(table, on=on, how='left', validate='one_to_one')

    return merged
