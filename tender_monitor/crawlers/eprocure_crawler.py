"""
Crawler for the list-navigation portals (eprocure.gov.in, etenders.gov.in).

The organisation listing links every organisation to its tender table. Each
organisation is one Worker Pool item running on its own browser page: open
the tender table, read rows page by page, visit each detail page, save the
record and step back to the table.
"""

import time
from dataclasses import dataclass
from typing import List, Optional

from tender_monitor.concurrent.models import TaskOutcome
from tender_monitor.concurrent.worker_pool import WorkerPool
from tender_monitor.sessions.models import ScrapingProvider
from tender_monitor.utils.dates import is_date_in_range
from tender_monitor.utils.errors import CrawlerError, ValidationError
from .base import (
    BaseTenderCrawler,
    CrawlRun,
    OrganizationInfo,
    collapse_whitespace,
    dedupe_organizations,
    slugify,
)
from .browser import BrowserPage
from .converters import TenderListing, convert_listing


LIST_TABLE = "table.list_table"
DETAIL_CONTENT = ".page_content"

ORGANIZATIONS_SCRIPT = r"""
() => {
  const clean = (s) => (s || "").replace(/\s+/g, " ").trim();
  const rows = document.querySelectorAll("table.list_table tr.even, table.list_table tr.odd");
  const out = [];
  for (const row of Array.from(rows)) {
    const cells = row.querySelectorAll("td");
    if (cells.length < 3) continue;
    const countCell = cells[2];
    const anchor = countCell.querySelector("a.link2") || countCell.querySelector("a");
    const href = anchor ? anchor.getAttribute("href") : null;
    out.push({
      name: clean(cells[1].textContent),
      count: clean(countCell.textContent),
      link: href ? new URL(href, document.baseURI).href : null
    });
  }
  return out;
}
"""

TENDER_ROWS_SCRIPT = r"""
() => {
  const clean = (s) => (s || "").replace(/\s+/g, " ").trim();
  const rows = document.querySelectorAll("table.list_table tr.even, table.list_table tr.odd");
  const out = [];
  for (const row of Array.from(rows)) {
    const cells = row.querySelectorAll("td");
    if (cells.length < 6) continue;
    const titleCell = cells[4];
    const anchor = titleCell.querySelector("a");
    const href = anchor ? anchor.getAttribute("href") : "";
    const refs = clean(titleCell.textContent).match(/\[([^\]]+)\]/g);
    out.push({
      serial_number: clean(cells[0].textContent),
      published: clean(cells[1].textContent),
      closing: clean(cells[2].textContent),
      opening: clean(cells[3].textContent),
      title: anchor ? clean(anchor.textContent) : "",
      link: href ? new URL(href, document.baseURI).href : "",
      reference_number: refs ? refs[refs.length - 1].replace(/[\[\]]/g, "") : "",
      organisation_chain: clean(cells[5].textContent)
    });
  }
  return out;
}
"""

DETAIL_SECTIONS_SCRIPT = r"""
() => {
  const clean = (s) => (s || "").replace(/\s+/g, " ").trim();
  const readTable = (table) => {
    const pairs = {};
    for (const row of Array.from(table.querySelectorAll("tr"))) {
      const cells = Array.from(row.children).filter((c) => c.tagName === "TD");
      if (![2, 4, 6].includes(cells.length)) continue;
      for (let i = 0; i + 1 < cells.length; i += 2) {
        const key = clean(cells[i].textContent).replace(/[:*\s]+$/, "");
        if (key) pairs[key] = clean(cells[i + 1].textContent);
      }
    }
    return pairs;
  };
  const sections = {};
  for (const header of Array.from(document.querySelectorAll(".pageheader"))) {
    const title = clean(header.textContent);
    if (!title || sections[title]) continue;
    let node = header.closest("tr") || header;
    let table = null;
    while (node && !table) {
      let next = node.nextElementSibling;
      while (next && !table) {
        table = next.matches("table.tablebg") ? next : next.querySelector("table.tablebg");
        next = next.nextElementSibling;
      }
      node = node.parentElement;
    }
    if (table) sections[title] = readTable(table);
  }
  return sections;
}
"""

@dataclass
class OrganizationOutcome:
    """What one organisation worker achieved."""
    organization: str
    found: bool
    tenders_scraped: int = 0
    error: Optional[str] = None


def parse_tender_count(text: Optional[str]) -> Optional[int]:
    digits = "".join(ch for ch in (text or "") if ch.isdigit())
    return int(digits) if digits else None


def match_organization(organizations: List[OrganizationInfo], selector: str) -> Optional[OrganizationInfo]:
    """Find an organisation by case-insensitive name or by id."""
    wanted_name = collapse_whitespace(selector).lower()
    wanted_id = slugify(selector)
    for org in organizations:
        if collapse_whitespace(org.name).lower() == wanted_name:
            return org
    for org in organizations:
        if org.id == selector or org.id == wanted_id:
            return org
    return None


class EProcureCrawler(BaseTenderCrawler):
    """List-navigation crawler, one worker per organisation."""

    provider = ScrapingProvider.EPROCURE
    logger_name = 'crawler_eprocure'

    def __init__(self, registry, versioning, base_url: str, browser=None, browser_config=None,
                 provider=None, worker_pool: Optional[WorkerPool] = None):
        super().__init__(registry, versioning, base_url, browser=browser,
                         browser_config=browser_config, provider=provider)
        self.worker_pool = worker_pool or WorkerPool()

    # Discovery

    def discover(self, target: Optional[str] = None) -> List[OrganizationInfo]:
        with self.browser.open_page() as page:
            return self._load_organizations(page, target or self.base_url)

    def _load_organizations(self, page: BrowserPage, url: str) -> List[OrganizationInfo]:
        page.navigate(url)
        page.wait_for(LIST_TABLE)
        rows = page.evaluate(ORGANIZATIONS_SCRIPT) or []

        organizations = dedupe_organizations(
            OrganizationInfo(
                name=row["name"],
                id=slugify(row["name"]),
                value=row["name"],
                tender_count=parse_tender_count(row.get("count")),
                link=row.get("link"),
            )
            for row in rows if row.get("name")
        )
        self.logger.info(f"Discovered {len(organizations)} organisations at {url}")
        return organizations

    # Execution

    def run(self, run: CrawlRun, target: str, organizations: List[str]) -> None:
        run.activity(None, "INIT")

        # Failing to load the listing is fatal for the whole run
        with self.browser.open_page() as page:
            available = self._load_organizations(page, target)

        run.set_counters(organizations_found=len(organizations))
        run.activity(None, "Organisations loaded")

        resolved: List[OrganizationInfo] = []
        unresolved = 0
        for selector in organizations:
            org = match_organization(available, selector)
            if org is None or not org.link:
                self.logger.warning(f"Organisation not found on portal: {selector}")
                unresolved += 1
            elif any(org.id == known.id for known in resolved):
                unresolved += 1
            else:
                resolved.append(org)

        total = max(1, len(organizations))
        done = unresolved
        if unresolved:
            run.increment(organizations_scraped=unresolved)
            run.progress(done / total * 100)

        def on_progress(completed: int, batch_total: int, outcome: TaskOutcome) -> None:
            nonlocal done
            org = resolved[outcome.index]
            if not outcome.success:
                self.logger.error(f"Organisation {org.name} failed after {outcome.attempts} attempts: "
                                  f"{outcome.error_message}")
            elif not outcome.data.found:
                self.logger.warning(f"Organisation {org.name} recorded as not found: {outcome.data.error}")
            done += 1
            run.increment(organizations_scraped=1)
            run.progress(done / total * 100)

        if resolved and not run.should_stop():
            self.worker_pool.run_parallel(
                resolved,
                lambda org, token: self._crawl_organization(run.for_attempt(token), target, org),
                on_progress=on_progress,
                cancel_token=run.token,
                pass_token=True
            )

    def _crawl_organization(self, run: CrawlRun, target: str, org: OrganizationInfo) -> OrganizationOutcome:
        if run.should_stop():
            return OrganizationOutcome(org.name, found=False, error="stopped")

        run.activity(org.name, "Opening tender listing")
        with self.browser.open_page() as page:
            # Setup failures propagate so the pool can retry the organisation
            page.navigate(org.link)
            page.wait_for(LIST_TABLE)

            try:
                scraped = self._scrape_listing_pages(page, run, org)
            except CrawlerError as e:
                self.logger.error(f"Error processing organisation {org.name}: {e}")
                self.navigate_home(page, target)
                return OrganizationOutcome(org.name, found=False, error=str(e))

        self.logger.info(f"Organisation {org.name}: {scraped} tenders scraped")
        return OrganizationOutcome(org.name, found=True, tenders_scraped=scraped)

    def _scrape_listing_pages(self, page: BrowserPage, run: CrawlRun, org: OrganizationInfo) -> int:
        scraped = 0
        limit = run.per_org_limit

        seen_pages = set()

        while not run.should_stop():
            rows = page.evaluate(TENDER_ROWS_SCRIPT) or []
            signature = tuple(row.get("link") for row in rows)
            if signature in seen_pages:
                # Pager wrapped around or did not advance
                break
            seen_pages.add(signature)

            run.increment(pages_navigated=1)
            listing_url = page.current_url()
            listings = self._to_listings(rows, run)

            if limit is not None:
                listings = listings[:max(0, limit - scraped)]
            run.increment(tenders_found=len(listings))

            for listing in listings:
                if run.should_stop():
                    return scraped
                self._scrape_tender(page, run, org, listing, listing_url)
                scraped += 1

            if limit is not None and scraped >= limit:
                break
            if not self.go_to_next_page(page, LIST_TABLE):
                break

        return scraped

    def _to_listings(self, rows: List[dict], run: CrawlRun) -> List[TenderListing]:
        listings = []
        for row in rows:
            if not row.get("title") or not row.get("link"):
                continue
            if not is_date_in_range(row.get("published"), run.date_range):
                continue
            listings.append(TenderListing(
                title=row["title"],
                link=row["link"],
                serial_number=row.get("serial_number"),
                published=row.get("published"),
                closing=row.get("closing"),
                opening=row.get("opening"),
                reference_number=row.get("reference_number"),
                organisation_chain=row.get("organisation_chain"),
            ))
        return listings

    def _scrape_tender(self, page: BrowserPage, run: CrawlRun, org: OrganizationInfo,
                       listing: TenderListing, listing_url: str) -> None:
        """Visit one detail page; row errors are logged and the row skipped."""
        run.activity(org.name, f'Scraping "{listing.title}"')
        saved = 0
        try:
            started = time.monotonic()
            page.navigate(listing.link)
            page.wait_for(DETAIL_CONTENT)
            run.record_response(time.monotonic() - started)
            listing.details = page.evaluate(DETAIL_SECTIONS_SCRIPT) or {}
            record = convert_listing(listing, self.provider, run.session_id)
            if self.save_record(run, record) is not None:
                saved = 1
        except (CrawlerError, ValidationError) as e:
            self.logger.error(f"Error scraping details for tender {listing.title}: {e}")
            run.increment(error_count=1)
        finally:
            run.increment(tenders_scraped=1, tenders_saved=saved)

        self._return_to_listing(page, listing_url)

    def _return_to_listing(self, page: BrowserPage, listing_url: str) -> None:
        """
        Go back to the tender table, reloading it by URL if history fails.

        Raises:
            CrawlerError: If the table cannot be reached either way
        """
        if page.current_url() == listing_url and page.is_present(LIST_TABLE):
            return
        try:
            page.go_back()
            page.wait_for(LIST_TABLE)
        except CrawlerError as e:
            self.logger.warning(f"Back navigation failed, reloading listing: {e}")
            page.navigate(listing_url)
            page.wait_for(LIST_TABLE)

