"""
Report renderer: generate JSON/Markdown/CSV/HTML views of the consolidated release data.
HTML and Markdown are rendered with Jinja2 from report/templates/.
"""

from typing import Any
import os
import json
import io
import csv

from jinja2 import Environment, FileSystemLoader, select_autoescape

from normalize.models import ConsolidatedResult

FORMATS = ('json', 'md', 'csv', 'html')
CSV_COLUMNS = ['project', 'team', 'work_item_id', 'work_item_title', 'work_item_url', 'pr_title', 'authors', 'pull_requests']

_TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), 'templates')


def _environment() -> Environment:
    return Environment(
        loader=FileSystemLoader(_TEMPLATE_DIR),
        autoescape=select_autoescape(['html', 'xml', 'html.j2']),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def render_json(data: Any) -> str:
    """Serialize a record (anything with to_dict) or plain data as indented JSON, keeping non-ASCII text."""
    if hasattr(data, 'to_dict'):
        data = data.to_dict()
    return json.dumps(data, indent=2, ensure_ascii=False)


def render_markdown(result: ConsolidatedResult) -> str:
    return _environment().get_template('release.md.j2').render(result=result)


def render_html(result: ConsolidatedResult) -> str:
    return _environment().get_template('release.html.j2').render(result=result)


def render_csv(result: ConsolidatedResult) -> str:
    """One row per work item; authors and PR URLs are joined with '; '."""
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator='\n')
    writer.writerow(CSV_COLUMNS)
    for group in result.projects:
        for e in group.entries:
            writer.writerow([
                group.project_name,
                e.team_display_name,
                e.work_item_id,
                e.work_item_title,
                e.work_item_url,
                e.pr_title,
                '; '.join(e.authors),
                '; '.join(e.pull_request_urls),
            ])
    return buf.getvalue()


def render(result: ConsolidatedResult, fmt: str = 'json') -> str:
    """Render the consolidated result in one of FORMATS."""
    fmt = (fmt or 'json').lower()
    renderers = {
        'json': render_json,
        'md': render_markdown,
        'csv': render_csv,
        'html': render_html,
    }
    if fmt not in renderers:
        raise ValueError(f"Unsupported format {fmt!r}; expected one of {', '.join(FORMATS)}")
    return renderers[fmt](result)
