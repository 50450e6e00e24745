from __future__ import annotations
import os, datetime, time, logging
from dataclasses import asdict
from assess_core.engine import AdaptiveSession
from assess_core.errors import CollaboratorError
from assess_core.config import load_config, OFFLINE_TEMPLATES
from assess_core.llm_bridge import bridge_from_config
from assess_core.templates import TemplateGenerator
from assess_core.report_html import render_report_html
from assess_core.types import HINT_CATEGORIES, Question

def show(q: Question) -> None:
    print(f"\n[{q.dimension} · level {q.difficulty} · {q.type}]")
    print(q.prompt)
    if q.type == "multiple_choice":
        for i, opt in enumerate(q.choices or []): print(f"  [{i}] {opt}")
    elif q.type == "trace":
        print(q.code_to_trace)
    elif q.type == "code":
        print(q.starter_code)
        for r in q.requirements or []: print(f"  - {r}")

def read_answer(q: Question) -> str:
    if q.type == "code":
        print("Enter code; finish with a line containing only END. Type ?<category> on the first line for a hint.")
        lines = []
        while True:
            line = input()
            if line.strip() == "END": break
            if not lines and line.startswith("?"): return line.strip()
            lines.append(line)
        return "\n".join(lines)
    return input("Answer (or ?<category> for a hint): ").strip()

def main():
    logging.basicConfig(level=logging.WARNING, format="[%(levelname)s] %(message)s")
    print("Adaptive programming assessment")
    cfg = load_config()
    bridge = bridge_from_config(cfg)
    gen = bridge if bridge is not None else (TemplateGenerator() if OFFLINE_TEMPLATES else None)
    name = input("Your name (optional): ").strip() or None
    session = AdaptiveSession(learner_name=name, generator=gen, grader=bridge, hinter=bridge, profiler=bridge)
    if bridge is not None:
        bridge.session_id = session.session_id
    while True:
        try:
            q = session.next_question()
        except CollaboratorError as e:
            print(f"Could not get the next question ({e}); ending early.")
            break
        if q is None: break
        show(q)
        t0 = time.perf_counter(); first = None
        while True:
            v = read_answer(q)
            if first is None: first = int((time.perf_counter() - t0) * 1000)
            if v.startswith("?"):
                cat = v[1:].strip() or "conceptual"
                if cat not in HINT_CATEGORIES:
                    print(f"Hint categories: {', '.join(HINT_CATEGORIES)}"); continue
                ev = session.request_hint(q.id, cat, int((time.perf_counter() - t0) * 1000))
                print(f"Hint: {ev.text}")
                continue
            break
        try:
            out = session.answer_current(q.id, v, int((time.perf_counter() - t0) * 1000), first)
        except CollaboratorError as e:
            print(f"Grading is unavailable right now ({e}); try again.")
            continue
        print(f"{out['verdict'].upper()}: {out['feedback']}")
    res = session.finish()
    os.makedirs("reports", exist_ok=True)
    ts = datetime.datetime.now().strftime("%Y%m%d_%H%M%S")
    path = os.path.join("reports", f"report_{ts}.html")
    with open(path, "w", encoding="utf-8") as f:
        f.write(render_report_html(asdict(res)))
    print(f"Done ({res.completion_reason}). Report saved to: {path}")
if __name__ == "__main__": main()
