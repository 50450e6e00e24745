from __future__ import annotations
from html import escape
from typing import Dict, Any, List

from .config import AUDIT_EXPORT_ENABLED

_LABELS = {
    "low_level": "Low-level &amp; binary",
    "control_flow": "Control flow",
    "hardware_io": "Hardware I/O",
    "code_reading": "Code reading",
    "decomposition": "Decomposition",
}

def _label(dim: str) -> str:
    return _LABELS.get(dim, escape(str(dim)))

def _bar(level: int) -> str:
    return "&#9632;" * int(level) + "&#9633;" * max(0, 5 - int(level))

def _row(d: Dict[str, Any]) -> str:
    return (
        f"<tr><td>{_label(d.get('dimension'))}</td>"
        f"<td>{_bar(d.get('estimated_level', 0))} {d.get('estimated_level')}</td>"
        f"<td>{float(d.get('confidence', 0.0)) * 100:.0f}%</td>"
        f"<td>{float(d.get('accuracy', 0.0)) * 100:.0f}%</td>"
        f"<td>{d.get('questions_answered', 0)}</td>"
        f"<td>[{float(d.get('lower_bound', 1.0)):.2f}, {float(d.get('upper_bound', 5.0)):.2f}]</td></tr>"
    )

def render_report_html(result: Dict[str, Any], report_id: str | None = None) -> str:
    """Standalone HTML page for a finished session's result dict."""
    dims: List[Dict[str, Any]] = list(result.get("dimension_scores") or [])
    hp = result.get("hint_profile") or {}
    timing = result.get("timing") or {}
    rows = "\n".join(_row(d) for d in dims)

    who = escape(str(result.get("learner_name") or "Learner"))
    reason = str(result.get("completion_reason") or "")
    banner = ""
    if reason == "hard_cap":
        banner = ("<div class=\"banner warning\">Question limit reached before every estimate converged; "
                  "treat low-confidence rows with care.</div>")
    elif reason == "manual":
        banner = "<div class=\"banner warning\">Session ended early by the learner.</div>"

    def _list(items: List[str], empty: str) -> str:
        if not items: return f"<p><i>{empty}</i></p>"
        return "<ul>" + "".join(f"<li>{_label(x)}</li>" for x in items) + "</ul>"

    dist = hp.get("category_distribution") or {}
    dist_txt = " &middot; ".join(f"{escape(str(k))}: {v}" for k, v in dist.items()) or "none"

    lp = result.get("learner_profile") or {}
    profile_html = ""
    if lp:
        areas = "".join(f"<li>{escape(str(a))}</li>" for a in lp.get("areas_for_improvement") or [])
        profile_html = (
            "<h3>Learner profile</h3>"
            f"<p><b>Overall:</b> {escape(str(lp.get('overall_strength', '')))}</p>"
            + (f"<ul>{areas}</ul>" if areas else "")
            + f"<p><b>Approach:</b> {escape(str(lp.get('problem_solving_approach', '')))}</p>"
            f"<p><b>Answers:</b> {escape(str(lp.get('code_quality', '')))}</p>"
        )

    audit_links = ""
    if AUDIT_EXPORT_ENABLED and report_id:
        rid = escape(str(report_id))
        audit_links = (
            "<p class=\"audit-links\">"
            f"<a href=\"/results/{rid}/audit.json\">Download audit (JSON)</a> &middot; "
            f"<a href=\"/results/{rid}/audit.csv\">Download audit (CSV)</a>"
            "</p>"
        )

    return f"""<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8"/>
<title>Assessment Report</title>
<style>
 body{{font-family:system-ui,-apple-system,Segoe UI,Roboto,Ubuntu,'Helvetica Neue',Arial}}
 .wrap{{max-width:960px;margin:40px auto;padding:0 16px}}
 h1{{margin:0 0 16px}}
 .banner{{padding:12px 16px;border-radius:6px;margin:16px 0}}
 .banner.warning{{background:#ffe7d9;border:1px solid #f5a623;color:#7a2d00}}
 table{{border-collapse:collapse;width:100%}}
 th,td{{text-align:left}}
</style>
</head>
<body>
<div class="wrap">
  <h1>Assessment Report: {who}</h1>
  <p><b>Questions:</b> {result.get('questions_answered', 0)} &middot;
     <b>Partial credit:</b> {result.get('partial_credits', 0)} &middot;
     <b>Time:</b> {int(result.get('total_time_ms', 0)) / 60000:.1f} min &middot;
     <b>Finished:</b> {escape(reason)}</p>
  {banner}

  <table border='1' cellpadding='6' cellspacing='0'>
    <thead><tr><th>Dimension</th><th>Level</th><th>Confidence</th><th>Accuracy</th><th>N</th><th>Bounds</th></tr></thead>
    <tbody>{rows}</tbody>
  </table>

  <h3>Strengths</h3>
  {_list(list(result.get('strengths') or []), 'No dimension reached level 4 yet.')}
  <h3>Growth areas</h3>
  {_list(list(result.get('growth_areas') or []), 'No dimension at level 2 or below.')}

  <h3>Help-seeking</h3>
  <p><b>Style:</b> {escape(str(result.get('help_seeking_style', '')))} &middot;
     <b>Hints:</b> {hp.get('total_hints', 0)} ({dist_txt})</p>
  <p>{escape(str(result.get('hint_narrative', '')))}</p>

  <p><b>Timing:</b> avg {float(timing.get('avg_total_sec', 0.0)):.1f}s per question &middot;
     first action {float(timing.get('avg_first_action_sec', 0.0)):.1f}s &middot;
     hinted {float(timing.get('hinted_fraction', 0.0)) * 100:.0f}%</p>
  {profile_html}
  {audit_links}
</div>
</body>
</html>"""
