#!/usr/bin/env python3
"""Generate a synthetic OTM score sheet for manual and load testing.

The sheet uses the localized headers operators actually type (`Fan 1`,
`Ona tili`, ...) so it also exercises header normalization. Pupil ids are
consecutive from --first-pupil-id; a share of rows can be left blank (skip
rows) or pushed out of range (row errors).
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd

HEADERS = ["Pupil ID", "Fan 1", "Fan 2", "Ona tili", "Matematika", "Tarix", "Exam ID", "Fan 1 sertifikat"]


def generate_scores(
    rows: int,
    *,
    first_pupil_id: int = 1,
    exam_id: int | None = None,
    blank_ratio: float = 0.0,
    error_ratio: float = 0.0,
    seed: int = 42,
) -> pd.DataFrame:
    """Random but reproducible score rows.

    Certificate percentages are filled for roughly one row in ten.
    """
    rng = np.random.default_rng(seed)
    data = {
        "Pupil ID": np.arange(first_pupil_id, first_pupil_id + rows),
        "Fan 1": rng.integers(0, 31, rows),
        "Fan 2": rng.integers(0, 31, rows),
        "Ona tili": rng.integers(0, 11, rows),
        "Matematika": rng.integers(0, 11, rows),
        "Tarix": rng.integers(0, 11, rows),
    }
    df = pd.DataFrame(data).astype(object)
    df["Exam ID"] = exam_id if exam_id else ""
    cert = np.round(rng.uniform(50, 100, rows), 2).astype(object)
    cert[rng.random(rows) >= 0.1] = ""
    df["Fan 1 sertifikat"] = cert

    score_cols = HEADERS[1:6] + ["Fan 1 sertifikat"]
    blank_mask = rng.random(rows) < blank_ratio
    df.loc[blank_mask, score_cols] = ""
    error_mask = (rng.random(rows) < error_ratio) & ~blank_mask
    df.loc[error_mask, "Fan 1"] = 31
    return df[HEADERS]


def write_sheet(df: pd.DataFrame, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".csv":
        df.to_csv(path, index=False)
    else:
        with pd.ExcelWriter(path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="OTM", index=False)
    return path


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Generate a synthetic OTM score sheet")
    p.add_argument("output", type=Path, help="Target .xlsx or .csv file")
    p.add_argument("--rows", type=int, default=200)
    p.add_argument("--first-pupil-id", type=int, default=1)
    p.add_argument("--exam-id", type=int, default=None)
    p.add_argument("--blank-ratio", type=float, default=0.05)
    p.add_argument("--error-ratio", type=float, default=0.0)
    p.add_argument("--seed", type=int, default=42)
    args = p.parse_args(argv)

    if args.rows <= 0:
        print("rows must be positive", file=sys.stderr)
        return 1
    df = generate_scores(
        args.rows,
        first_pupil_id=args.first_pupil_id,
        exam_id=args.exam_id,
        blank_ratio=args.blank_ratio,
        error_ratio=args.error_ratio,
        seed=args.seed,
    )
    out = write_sheet(df, args.output)
    print(f"wrote {len(df)} rows to {out}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
