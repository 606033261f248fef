"""
Executive summary rendering for experiment results (HTML via Jinja2).
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict

from jinja2 import Environment, select_autoescape

from ..config import DEFAULT_ARTIFACTS_DIR

logger = logging.getLogger(__name__)

EXEC_SUMMARY_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Experiment {{ experiment_id }} - Executive Summary</title>
<style>
body { font-family: sans-serif; margin: 2em; }
table { border-collapse: collapse; }
th, td { border: 1px solid #ccc; padding: 4px 10px; text-align: right; }
th:first-child, td:first-child { text-align: left; }
.winner { font-weight: bold; color: #1a7f37; }
.warn { color: #b35900; }
</style>
</head>
<body>
<h1>Experiment {{ experiment_id }}</h1>
<p>Status: {{ results.status }} &middot; Confidence: {{ "%.1f" | format(results.confidence * 100) }}%
{% if results.winner %} &middot; <span class="winner">Winner: {{ results.winner }}</span>{% endif %}</p>
{% if not results.srm_passed %}
<p class="warn">Sample ratio mismatch detected (p={{ "%.4f" | format(results.srm_p_value) }}).</p>
{% endif %}

<h2>Variants</h2>
<table>
<tr><th>Variant</th><th>Participants</th><th>Conversions</th><th>Rate</th><th>CI</th><th>Revenue / user</th><th>Significance</th></tr>
{% for vid, r in results.results.items() %}
<tr>
<td>{{ vid }}{% if vid == results.control_variant_id %} (control){% endif %}</td>
<td>{{ r.participants }}</td>
<td>{{ r.conversions }}</td>
<td>{{ "%.2f" | format(r.conversion_rate * 100) }}%</td>
<td>{{ "%.2f" | format(r.confidence_interval[0] * 100) }}% - {{ "%.2f" | format(r.confidence_interval[1] * 100) }}%</td>
<td>{{ "%.2f" | format(r.revenue_per_user) }}</td>
<td>{{ "%.3f" | format(r.significance) }}</td>
</tr>
{% endfor %}
</table>

{% if results.insights %}
<h2>Insights</h2>
<ul>{% for item in results.insights %}<li>{{ item }}</li>{% endfor %}</ul>
{% endif %}
{% if results.recommendations %}
<h2>Recommendations</h2>
<ul>{% for item in results.recommendations %}<li>{{ item }}</li>{% endfor %}</ul>
{% endif %}
<p><small>Generated {{ generated_at }}</small></p>
</body>
</html>
"""

_env = Environment(autoescape=select_autoescape(default_for_string=True))


def render_exec_summary(
    results: Dict[str, Any],
    experiment_id: str,
    artifacts_dir: str = DEFAULT_ARTIFACTS_DIR,
) -> Path:
    """
    Render exec_summary.html for an experiment.

    Args:
        results: ExperimentResults.to_dict() output
        experiment_id: Experiment identifier
        artifacts_dir: Base artifacts directory

    Returns:
        Path to the written HTML file
    """
    template = _env.from_string(EXEC_SUMMARY_TEMPLATE)
    html = template.render(
        experiment_id=experiment_id,
        results=results,
        generated_at=datetime.utcnow().isoformat(timespec="seconds"),
    )

    out_dir = Path(artifacts_dir) / experiment_id
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / "exec_summary.html"
    path.write_text(html, encoding="utf-8")
    logger.info(f"Executive summary written to {path}")
    return path
