"""Dashboard view: pull request queue by state, crawl status and CI builds."""

import html
from dataclasses import dataclass, field
from typing import Any

from .store import CrawlState, PullRequestRecord

# First branch present wins when picking the build to display
BUILD_BRANCH_PRIORITY = ("integration", "develop", "master")

LAST_RUN_FORMAT = "%b %d %y, %I:%M:%S %p"


@dataclass
class BuildStatus:
    """Latest CI build of the branch shown for one project."""

    slug: str
    project_url: str
    build_url: str
    state: str


@dataclass
class DashboardView:
    """Everything the dashboard page renders."""

    open: list[PullRequestRecord] = field(default_factory=list)
    merged: list[PullRequestRecord] = field(default_factory=list)
    closed: list[PullRequestRecord] = field(default_factory=list)
    crawl: CrawlState = field(default_factory=CrawlState)
    builds: list[BuildStatus] = field(default_factory=list)

    @property
    def last_run(self) -> str:
        if self.crawl.last_run is None:
            return "never"
        return self.crawl.last_run.strftime(LAST_RUN_FORMAT)


def select_build(project: dict[str, Any]) -> dict[str, Any] | None:
    """Most recent build on the highest-priority branch the project has."""
    branches = project.get("branches") or {}
    for branch in BUILD_BRANCH_PRIORITY:
        if branch in branches:
            builds = (branches[branch] or {}).get("recent_builds") or []
            return builds[0] if builds else None
    return None


def build_statuses(projects: list[dict[str, Any]], org: str) -> list[BuildStatus]:
    """Build status rows for the CircleCI projects that belong to ``org``."""
    statuses = []
    for project in projects:
        if f"/{org}/" not in project.get("vcs_url", ""):
            continue

        build = select_build(project)
        if build is None:
            continue

        name = project.get("reponame", "")
        project_url = f"https://circleci.com/gh/{org}/{name}"
        statuses.append(
            BuildStatus(
                slug=f"{org}/{name}",
                project_url=project_url,
                build_url=f"{project_url}/{build.get('build_num')}",
                state=build.get("outcome") or "running",
            )
        )
    return statuses


def build_view(
    records: list[PullRequestRecord],
    crawl: CrawlState,
    builds: list[BuildStatus],
) -> DashboardView:
    view = DashboardView(crawl=crawl, builds=builds)
    buckets = {"open": view.open, "merged": view.merged, "closed": view.closed}
    for record in sorted(records, key=lambda r: r.updated_at, reverse=True):
        buckets[record.state].append(record)
    return view


_PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>Review queue</title>
</head>
<body>
<h1>Review queue</h1>
<p>Last crawl: {last_run}{running}</p>
{sections}
<h2>Builds</h2>
<ul>
{builds}
</ul>
</body>
</html>
"""


def _render_reviews(record: PullRequestRecord) -> str:
    items = [
        f'<span class="review {html.escape(r.get("status", ""))}">'
        f"{html.escape(name)}: {html.escape(r.get('message', ''))}</span>"
        for name, r in record.reviews.items()
    ]
    return " ".join(items)


def _render_section(title: str, records: list[PullRequestRecord]) -> str:
    rows = "\n".join(
        f'<li><a href="{html.escape(r.url)}">{html.escape(r.slug)}</a> '
        f"{html.escape(r.title)} by {html.escape(r.author)} {_render_reviews(r)}</li>"
        for r in records
    )
    return f"<h2>{title} ({len(records)})</h2>\n<ul>\n{rows}\n</ul>"


def render_dashboard(view: DashboardView) -> str:
    """Render the dashboard page as HTML."""
    sections = "\n".join(
        [
            _render_section("Open", view.open),
            _render_section("Merged", view.merged),
            _render_section("Closed", view.closed),
        ]
    )
    builds = "\n".join(
        f'<li><a href="{html.escape(b.project_url)}">{html.escape(b.slug)}</a> '
        f'<a href="{html.escape(b.build_url)}">{html.escape(b.state)}</a></li>'
        for b in view.builds
    )
    return _PAGE_TEMPLATE.format(
        last_run=html.escape(view.last_run),
        running=" (crawling now)" if view.crawl.running else "",
        sections=sections,
        builds=builds,
    )