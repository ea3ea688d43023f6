import csv
import io
import json
import unittest

import pytest

from normalize.models import (
    Change,
    ConsolidatedEntry,
    ConsolidatedResult,
    ProjectGroup,
    ResolutionStatus,
    ResolvedWorkItem,
)
from report.renderer import render, render_csv, render_html, render_json, render_markdown


def sample_result():
    item = ResolvedWorkItem(work_item_id=5001, resolution_status=ResolutionStatus.ALREADY_TOP_LEVEL_OR_ABOVE,
                            title="Refund <flow>", url="https://dev.azure.com/acme/_workitems/edit/5001")
    entry = ConsolidatedEntry(
        pr_title="Bitbucket PR",
        work_item_id=5001,
        team_display_name="金流團隊",
        authors=("Alice", "Bob"),
        pull_request_urls=("https://bb/100",),
        work_item=item,
        changes=(Change(pr_id="100", title="Bitbucket PR", pr_url="https://bb/100"),),
    )
    return ConsolidatedResult(projects=(ProjectGroup(project_name="money-logistic", entries=(entry,)),))


class TestRenderer(unittest.TestCase):
    def test_json_keeps_non_ascii(self):
        text = render_json(sample_result())
        self.assertIn("金流團隊", text)
        data = json.loads(text)
        self.assertEqual(data["projects"]["money-logistic"][0]["workItemId"], 5001)

    def test_markdown(self):
        md = render_markdown(sample_result())
        self.assertIn("## money-logistic", md)
        self.assertIn("[5001](https://dev.azure.com/acme/_workitems/edit/5001)", md)
        self.assertIn("Alice, Bob", md)

    def test_html_escapes(self):
        html = render_html(sample_result())
        self.assertIn("<h2>money-logistic</h2>", html)
        self.assertIn("Refund &lt;flow&gt;", html)
        self.assertIn('href="https://bb/100"', html)

    def test_csv(self):
        rows = list(csv.reader(io.StringIO(render_csv(sample_result()))))
        self.assertEqual(rows[0][0], "project")
        self.assertEqual(rows[1][:3], ["money-logistic", "金流團隊", "5001"])
        self.assertEqual(rows[1][6], "Alice; Bob")

    def test_empty_result(self):
        self.assertIn("No release data available", render_html(ConsolidatedResult()))
        self.assertIn("No release data available", render_markdown(ConsolidatedResult()))


def test_render_dispatch():
    result = sample_result()
    for fmt in ("json", "md", "csv", "html", "HTML"):
        assert isinstance(render(result, fmt=fmt), str)
    with pytest.raises(ValueError):
        render(result, fmt="pdf")


def test_render_json_plain_data():
    assert json.loads(render_json({"NotFound": ["g/docs"]})) == {"NotFound": ["g/docs"]}
