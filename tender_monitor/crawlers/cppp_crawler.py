"""
Crawler for the CPPP award-of-contract search (eprocure.gov.in/cppp).

The portal only lists results behind a search form guarded by a CAPTCHA, so
one page drives a strictly sequential organisation x year loop. The CAPTCHA
text is read from the image's alt text; no OCR is involved.
"""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from tender_monitor.sessions.models import ScrapingProvider
from tender_monitor.utils.dates import is_date_in_range
from tender_monitor.utils.errors import CaptchaError, CrawlerError, ValidationError
from .base import (
    BaseTenderCrawler,
    CrawlRun,
    OrganizationInfo,
    collapse_whitespace,
    dedupe_organizations,
    slugify,
)
from .browser import BrowserPage
from .converters import convert_cppp_details, lookup


ORG_SELECT = "select#edit-org-name"
YEAR_SELECT = "select#edit-year"
CAPTCHA_IMAGE = 'img[data-drupal-selector="edit-captcha-image"]'
CAPTCHA_RELOAD = ".reload-captcha-wrapper a.reload-captcha"
CAPTCHA_INPUT = "#edit-captcha-response"
SEARCH_BUTTON = "#btnSearch"
RESULTS_TABLE = "table.list_table"
DETAIL_READY = "table td.black, #tenderDetailDivTd .event-dtl"

ROW_LINK_MARKER = "data-crawler-row-link"
PLACEHOLDER_OPTION = "-- select --"

SELECT_OPTIONS_SCRIPT = r"""
(selector) => {
  const select = document.querySelector(selector);
  if (!select) return [];
  return Array.from(select.options).map((o) => ({
    text: (o.textContent || "").replace(/\s+/g, " ").trim(),
    value: o.value
  }));
}
"""

CAPTCHA_LABEL_SCRIPT = r"""
(selector) => {
  const img = document.querySelector(selector);
  if (!img) return "";
  return (img.getAttribute("alt") || img.getAttribute("aria-label") || img.getAttribute("title") || "").trim();
}
"""

RESULT_ROWS_SCRIPT = r"""
() => {
  const clean = (s) => (s || "").replace(/\s+/g, " ").trim();
  const rows = Array.from(document.querySelectorAll("table.list_table tbody tr"));
  const out = [];
  rows.forEach((row, index) => {
    const cells = row.querySelectorAll("td");
    if (cells.length < 5) return;
    const anchor = cells[3].querySelector("a");
    out.push({
      index: index,
      aoc_date: clean(cells[1].textContent),
      title: clean(cells[3].textContent),
      link: anchor ? anchor.href : ""
    });
  });
  return out;
}
"""

MARK_ROW_LINK_SCRIPT = r"""
(arg) => {
  document.querySelectorAll("[" + arg.marker + "]").forEach((el) => el.removeAttribute(arg.marker));
  const rows = document.querySelectorAll("table.list_table tbody tr");
  const row = rows[arg.index];
  const anchor = row ? row.querySelector("td:nth-child(4) a") : null;
  if (!anchor) return false;
  anchor.setAttribute(arg.marker, "1");
  return true;
}
"""

# Label cell -> value cell (skipping a ":" cell); multi-line values joined with "; "
DETAIL_FIELDS_SCRIPT = r"""
() => {
  const clean = (s) => (s || "").replace(/\s+/g, " ").trim();
  const fields = {};
  const links = {};
  for (const labelTd of Array.from(document.querySelectorAll("td.black"))) {
    const label = clean(labelTd.textContent).replace(/[:*]+$/, "").trim();
    if (!label || label in fields) continue;
    let valueTd = labelTd.nextElementSibling;
    if (valueTd && valueTd.tagName === "TD" && /^[:：]$/.test(clean(valueTd.textContent))) {
      valueTd = valueTd.nextElementSibling;
    }
    if (!valueTd || valueTd.tagName !== "TD") continue;
    const source = valueTd.querySelector(".event-dtl") || valueTd;
    const parts = (source.innerHTML || "").split(/<br\s*\/?>/i).map((html) => {
      const tmp = document.createElement("div");
      tmp.innerHTML = html;
      return clean(tmp.textContent);
    }).filter(Boolean);
    fields[label] = parts.join("; ");
    const anchor = valueTd.querySelector("a");
    if (anchor && anchor.href) links[label] = anchor.href;
  }
  return { fields: fields, links: links };
}
"""


def option_value_for(options: List[Dict[str, str]], organization: str) -> Optional[str]:
    """Value of the form option whose text (or slug) matches ``organization``."""
    wanted_text = collapse_whitespace(organization).lower()
    wanted_slug = slugify(organization)
    for option in options:
        if collapse_whitespace(option.get("text")).lower() == wanted_text:
            return option.get("value")
    for option in options:
        if slugify(option.get("text") or "") == wanted_slug or option.get("value") == organization:
            return option.get("value")
    return None


class CpppCrawler(BaseTenderCrawler):
    """CAPTCHA-gated search-form crawler for award-of-contract results."""

    provider = ScrapingProvider.EPROCURE_CPPP
    logger_name = 'crawler_cppp'

    # Discovery

    def discover(self, target: Optional[str] = None) -> List[OrganizationInfo]:
        with self.browser.open_page() as page:
            page.navigate(target or self.base_url)
            page.wait_for(ORG_SELECT)
            options = self._read_options(page)

        organizations = dedupe_organizations(
            OrganizationInfo(name=option["text"], id=slugify(option["text"]), value=option["value"])
            for option in options
        )
        self.logger.info(f"Discovered {len(organizations)} CPPP organisations")
        return organizations

    def _read_options(self, page: BrowserPage) -> List[Dict[str, str]]:
        options = page.evaluate(SELECT_OPTIONS_SCRIPT, ORG_SELECT) or []
        return [
            option for option in options
            if option.get("text") and option["text"].strip().lower() != PLACEHOLDER_OPTION
        ]

    # Execution

    def run(self, run: CrawlRun, target: str, organizations: List[str]) -> None:
        years = run.date_range.years() if run.date_range else [datetime.now().year]
        units = max(1, len(organizations) * len(years))
        run.set_counters(organizations_found=units)
        run.activity(None, "INIT")

        with self.browser.open_page() as page:
            page.navigate(target)
            page.wait_for(ORG_SELECT)
            page.wait_for(YEAR_SELECT)
            options = self._read_options(page)
            run.activity(None, "Form ready")

            done = 0
            for organization in organizations:
                if run.should_stop():
                    return
                run.activity(organization, "Submitting searches")

                for year in years:
                    if run.should_stop():
                        return
                    self._crawl_organization_year(page, run, target, options, organization, year)

                    done += 1
                    run.increment(organizations_scraped=1)
                    run.progress(min(100.0, done / units * 100))

                    if self.wait_ms(run, self.browser_config.submission_delay_ms):
                        return

    def _crawl_organization_year(self, page: BrowserPage, run: CrawlRun, target: str,
                                 options: List[Dict[str, str]], organization: str, year: int) -> None:
        """One search submission and its results; errors are logged and absorbed."""
        try:
            if not self._submit_search(page, run, target, options, organization, year):
                self.logger.warning(f"Search submission failed for {organization} - {year}")
                return
            run.activity(organization, f"Processing tenders for year {year}")
            self._process_results(page, run, organization, year)
        except CrawlerError as e:
            self.logger.error(f"Error processing {organization} - {year}: {e}")
            self.navigate_home(page, target)

    # Search form

    def _ensure_form(self, page: BrowserPage, target: str) -> None:
        if not page.is_present(ORG_SELECT):
            page.navigate(target)
        page.wait_for(ORG_SELECT)
        page.wait_for(YEAR_SELECT)

    def _submit_search(self, page: BrowserPage, run: CrawlRun, target: str,
                       options: List[Dict[str, str]], organization: str, year: int) -> bool:
        """
        Fill and submit the search form, reloading and resubmitting once.

        Raises:
            CrawlerError: If the organisation is not offered by the form
        """
        value = option_value_for(options, organization)
        if value is None:
            raise CrawlerError(f"Organisation not offered by search form: {organization}",
                               {"organization": organization})

        run.activity(organization, f"Submitting for {organization} - Year {year}")
        self._ensure_form(page, target)

        for attempt in (1, 2):
            if attempt == 2:
                if run.should_stop():
                    return False
                self.logger.info(f"Retrying submission for {organization} - {year} after reload")
                page.reload()
                page.wait_for(ORG_SELECT)

            page.select_option(ORG_SELECT, value)
            page.select_option(YEAR_SELECT, str(year))

            try:
                captcha = self._solve_captcha(page, run)
            except CaptchaError as e:
                self.logger.warning(str(e))
                return False

            page.type(CAPTCHA_INPUT, captcha)
            navigated = page.click_and_wait(SEARCH_BUTTON)
            if navigated or not page.is_present(CAPTCHA_INPUT):
                return True

        return False

    def _solve_captcha(self, page: BrowserPage, run: CrawlRun) -> str:
        """
        Read the CAPTCHA text, reloading the image once if it is missing.

        Raises:
            CaptchaError: If no text is available after the reload
        """
        text = (page.evaluate(CAPTCHA_LABEL_SCRIPT, CAPTCHA_IMAGE) or "").strip()
        if text:
            return text

        self.logger.info("CAPTCHA label missing, reloading CAPTCHA")
        try:
            page.click(CAPTCHA_RELOAD)
        except CrawlerError as e:
            self.logger.warning(f"CAPTCHA reload control not usable: {e}")
        self.wait_ms(run, self.browser_config.captcha_reload_wait_ms)

        text = (page.evaluate(CAPTCHA_LABEL_SCRIPT, CAPTCHA_IMAGE) or "").strip()
        if not text:
            raise CaptchaError("CAPTCHA label unavailable after reload", {"url": page.current_url()})
        return text

    # Results

    def _process_results(self, page: BrowserPage, run: CrawlRun, organization: str, year: int) -> None:
        scraped = 0
        limit = run.per_org_limit
        seen_pages = set()

        while not run.should_stop():
            if not page.try_wait_for(RESULTS_TABLE):
                self.logger.info(f"No results table for {organization} - {year}")
                return

            rows = page.evaluate(RESULT_ROWS_SCRIPT) or []
            signature = tuple((row.get("title"), row.get("aoc_date")) for row in rows)
            if signature in seen_pages:
                return
            seen_pages.add(signature)

            run.activity(organization, f"finding Tender | year={year}")
            run.increment(pages_navigated=1)
            results_url = page.current_url()

            matching = [row for row in rows if is_date_in_range(row.get("aoc_date"), run.date_range)]
            if limit is not None:
                matching = matching[:max(0, limit - scraped)]
            run.increment(tenders_found=len(matching))

            for row in matching:
                if run.should_stop():
                    return
                self._scrape_row(page, run, organization, year, row, results_url)
                scraped += 1

            if limit is not None and scraped >= limit:
                return
            if not self.go_to_next_page(page, RESULTS_TABLE):
                return

    def _scrape_row(self, page: BrowserPage, run: CrawlRun, organization: str, year: int,
                    row: Dict[str, Any], results_url: str) -> None:
        title = row.get("title") or ""
        run.activity(organization, f'Scraping "{title}" | org={organization} | year={year}')
        saved = 0
        try:
            if not page.evaluate(MARK_ROW_LINK_SCRIPT, {"index": row["index"], "marker": ROW_LINK_MARKER}):
                raise CrawlerError("Tender link missing in results row", {"title": title})
            started = time.monotonic()
            page.click_and_wait(f"[{ROW_LINK_MARKER}]")
            page.wait_for(DETAIL_READY, timeout_ms=self.browser_config.detail_timeout_ms)
            run.record_response(time.monotonic() - started)

            details = page.evaluate(DETAIL_FIELDS_SCRIPT) or {}
            record = convert_cppp_details(
                details.get("fields") or {},
                title,
                page.current_url(),
                session_id=run.session_id,
                document_link=lookup(details.get("links"), "Tender Document"),
            )
            if self.save_record(run, record) is not None:
                saved = 1
        except (CrawlerError, ValidationError) as e:
            self.logger.error(f"Error scraping CPPP tender {title}: {e}")
            run.increment(error_count=1)
        finally:
            run.increment(tenders_scraped=1, tenders_saved=saved)

        self._return_to_results(page, results_url)

    def _return_to_results(self, page: BrowserPage, results_url: str) -> None:
        if page.current_url() != results_url or not page.is_present(RESULTS_TABLE):
            page.go_back()
        page.wait_for(RESULTS_TABLE)
