from __future__ import annotations
from collections import defaultdict
import json, os, sys
import importlib.resources as ir
from assess_core.types import DIMENSIONS
from assess_core.validators import question_problems

# Configurable targets; defaults match the packaged bank
TARGETS = {
    "per_level_min": int(os.getenv("TARGET_PER_LEVEL_MIN", 1)),
    "mid_level_min": int(os.getenv("TARGET_MID_LEVEL_MIN", 2)),
}

def main(path: str | None = None) -> int:
    if path:
        raw = json.loads(open(path, encoding="utf-8").read())
    else:
        raw = json.loads(ir.files("assess_core").joinpath("data/bank.json").read_text(encoding="utf-8"))

    errors = 0
    seen_ids: set[str] = set()
    grid: dict[str, dict[int, int]] = defaultdict(lambda: defaultdict(int))
    types: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    for q in raw:
        qid = q.get("id", "?")
        if qid in seen_ids:
            print(f"{qid}: duplicate id"); errors += 1
        seen_ids.add(qid)
        problems = question_problems(q)
        for p in problems:
            print(f"{qid}: {p}")
        errors += len(problems)
        if not problems:
            grid[q["dimension"]][int(q["difficulty"])] += 1
            types[q["dimension"]][q["type"]] += 1

    print(f"\n{len(raw)} questions, {errors} problem(s)\n")
    short = 0
    for d in DIMENSIONS:
        counts = " ".join(f"L{lvl}:{grid[d][lvl]:2d}" for lvl in range(1, 6))
        mix = ", ".join(f"{t}={n}" for t, n in sorted(types[d].items()))
        print(f"{d:14s} {counts}   ({mix})")
        for lvl in range(1, 6):
            need = TARGETS["mid_level_min"] if lvl == 3 else TARGETS["per_level_min"]
            if grid[d][lvl] < need:
                print(f"  → add {need - grid[d][lvl]} at level {lvl}"); short += 1
    if short:
        print(f"\n{short} coverage gap(s)")
    return 1 if errors else 0

if __name__ == "__main__":
    sys.exit(main(sys.argv[1] if len(sys.argv) > 1 else None))
