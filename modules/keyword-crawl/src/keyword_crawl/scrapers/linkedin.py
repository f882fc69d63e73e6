from __future__ import annotations

import logging
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from keyword_crawl.errors import NetworkError, ParseError
from keyword_crawl.models import JobDetail, JobListing
from keyword_crawl.scrapers.common import browser_headers, clean_spaces, extract_job_id, fetch_html

logger = logging.getLogger(__name__)

BASE_URL = "https://www.linkedin.com"
DETAIL_REFERER = "https://www.linkedin.com/jobs/"

_CARD_SELECTOR = (
    ".jobs-search__results-list li, .jobs-search-results-list li, "
    "[data-entity-urn^='urn:li:jobPosting']"
)
_LINK_SELECTOR = "a[href*='/jobs/view/'], a.base-card__full-link"
_TITLE_SELECTORS = (".base-search-card__title", ".job-search-card__title", "h3", ".sr-only")
_COMPANY_SELECTORS = (".base-search-card__subtitle", ".job-search-card__company", "h4 a")
_LOCATION_SELECTORS = (".job-search-card__location", ".base-search-card__metadata")
_DATE_SELECTORS = ("time", ".job-search-card__listdate", ".posted-time-ago__text")
_DESCRIPTION_SELECTOR = ".description__text, .jobs-description__content, .show-more-less-html__markup"
_CRITERIA_SELECTOR = ".description__job-criteria-item"
_SKILL_SELECTOR = ".jobs-description-details__list-item, .jobs-ppc-criteria__list li"


def _first_text(node, selectors: tuple[str, ...], min_length: int = 2) -> str:
    for selector in selectors:
        found = node.select_one(selector)
        if found is None:
            continue
        text = clean_spaces(found.get_text(" ", strip=True))
        if len(text) >= min_length:
            return text
    return ""


def _listing_from_card(card, base_url: str) -> JobListing | None:
    link = card.select_one(_LINK_SELECTOR)
    if link is None or not link.get("href"):
        return None

    url = urljoin(base_url, link["href"])
    if not url.startswith(("http://", "https://")):
        return None

    urn = card.get("data-entity-urn", "") or ""
    if not urn:
        inner = card.select_one("[data-entity-urn]")
        urn = inner.get("data-entity-urn", "") if inner is not None else ""
    job_id = extract_job_id(urn) if urn.startswith("urn:li:jobPosting") else extract_job_id(url)

    return JobListing(
        url=url,
        job_id=job_id,
        title=_first_text(card, _TITLE_SELECTORS, min_length=4) or "Position",
        company=_first_text(card, _COMPANY_SELECTORS) or "Company",
        location=_first_text(card, _LOCATION_SELECTORS, min_length=4) or "Location not specified",
        posted_date=_first_text(card, _DATE_SELECTORS, min_length=4),
        entity_urn=urn,
        metadata={
            key: value
            for key, value in (
                ("data_reference_id", card.get("data-reference-id", "")),
                ("data_tracking_id", card.get("data-tracking-id", "")),
            )
            if value
        },
    )


def parse_search_results(html: str, *, base_url: str = BASE_URL, limit: int | None = None) -> list[JobListing]:
    """Job cards on a search results page, first occurrence of each job id kept.

    A page without any recognisable card yields an empty list.
    """
    soup = BeautifulSoup(html, "html.parser")
    cards = soup.select(_CARD_SELECTOR)
    if not cards:
        cards = [card for card in soup.select(".base-card") if card.select_one(_LINK_SELECTOR)]

    listings: list[JobListing] = []
    seen_ids: set[str] = set()
    for card in cards:
        listing = _listing_from_card(card, base_url)
        if listing is None or listing.job_id in seen_ids:
            continue
        seen_ids.add(listing.job_id)
        listings.append(listing)
        if limit is not None and len(listings) >= limit:
            break
    return listings


def _criteria(soup) -> dict[str, str]:
    found: dict[str, str] = {}
    for item in soup.select(_CRITERIA_SELECTOR):
        label_node = item.select_one("h3") or item
        value_node = item.select_one("span")
        label = clean_spaces(label_node.get_text(" ", strip=True)).casefold()
        value = clean_spaces(value_node.get_text(" ", strip=True)) if value_node else ""
        if not value:
            continue
        if "seniority" in label or "experience" in label:
            found["experience_level"] = value
        elif "employment" in label or "type" in label:
            found["job_type"] = value
        elif "salary" in label or "pay" in label:
            found["salary"] = value
    return found


def degraded_detail(listing: JobListing, reason: str = "Failed to extract description") -> JobDetail:
    return JobDetail(
        listing=listing,
        title=listing.title,
        company=listing.company,
        location=listing.location,
        description=reason,
        degraded=True,
    )


def parse_job_detail(html: str, listing: JobListing) -> JobDetail:
    """Merge a job detail page into ``listing``.

    Raises ParseError when the page has no description at all; callers turn
    that into a degraded detail.
    """
    soup = BeautifulSoup(html, "html.parser")
    description_node = soup.select_one(_DESCRIPTION_SELECTOR)
    if description_node is None:
        raise ParseError(f"no job description found for {listing.url}")

    description = clean_spaces(description_node.get_text(" ", strip=True))
    title = _first_text(soup, (".top-card-layout__title", "h1"), min_length=2)
    company = _first_text(soup, (".topcard__org-name-link", ".topcard__flavor"), min_length=2)
    location = _first_text(soup, (".topcard__flavor--bullet",), min_length=2)
    skills = tuple(
        skill
        for skill in (clean_spaces(node.get_text(" ", strip=True)) for node in soup.select(_SKILL_SELECTOR))
        if 2 < len(skill) < 50
    )[:15]
    criteria = _criteria(soup)

    return JobDetail(
        listing=listing,
        title=listing.title if listing.title != "Position" else (title or listing.title),
        company=listing.company if listing.company != "Company" else (company or listing.company),
        location=listing.location if listing.location != "Location not specified" else (location or listing.location),
        description=description or "No description provided",
        job_type=criteria.get("job_type"),
        experience_level=criteria.get("experience_level"),
        salary=criteria.get("salary"),
        skills=skills,
    )


class LinkedInClient:
    """Guest (logged-out) LinkedIn jobs pages over a shared httpx client."""

    def __init__(
        self,
        client: httpx.Client,
        *,
        attempts: int = 3,
        backoff_seconds: float = 1.0,
        user_agent: str | None = None,
    ) -> None:
        self.client = client
        self.attempts = attempts
        self.backoff_seconds = backoff_seconds
        self.user_agent = user_agent

    def search(self, url: str) -> list[JobListing]:
        html = fetch_html(
            self.client,
            url,
            attempts=self.attempts,
            backoff_seconds=self.backoff_seconds,
            headers=browser_headers(self.user_agent),
        )
        listings = parse_search_results(html, base_url=BASE_URL)
        logger.info("found %d listings on %s", len(listings), url)
        return listings

    def detail(self, listing: JobListing) -> JobDetail:
        try:
            html = fetch_html(
                self.client,
                listing.url,
                attempts=self.attempts,
                backoff_seconds=self.backoff_seconds,
                headers=browser_headers(self.user_agent, referer=DETAIL_REFERER),
            )
            return parse_job_detail(html, listing)
        except (NetworkError, ParseError) as exc:
            logger.warning("detail scrape degraded for %s: %s", listing.url, exc)
            return degraded_detail(listing)
