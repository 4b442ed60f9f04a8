"""
Qrydex - Page extraction
Pulls description, about text, product/service names and contact details out
of a page, and picks the product/service subpages worth a follow-up fetch.
Missing sections degrade to empty values; only markup that BeautifulSoup
cannot handle at all is an error.
"""
import hashlib
import html
import re
import unicodedata
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import unquote, urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

PRODUCT_KEYWORDS = ("product", "produkt", "catalog", "katalog")
SERVICE_KEYWORDS = ("tjeneste", "service", "løsning", "solution")
ABOUT_KEYWORDS = ("about", "om-oss", "om oss", "omoss", "who-we-are")

FREE_EMAIL_PROVIDERS = frozenset({
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "live.com",
    "aol.com", "icloud.com", "mail.com", "protonmail.com",
})

_EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)
_PHONE_RE = re.compile(r"(?:(?:\+|00)\d{1,3}[\s.-]?)?(?:\(?\d{2,4}\)?[\s.-]?)?\d{2,4}[\s.-]?\d{2,4}[\s.-]?\d{2,4}")
_ASSET_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp")

MAX_ITEMS = 20
MAX_ABOUT = 1000


@dataclass
class PageExtract:
    title: Optional[str] = None
    description: Optional[str] = None
    about: Optional[str] = None
    products: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    text: str = ""

    def normalized_text(self) -> str:
        parts = [self.title, self.description, self.about, *self.products, *self.services, self.text]
        return " ".join(" ".join(p.lower().split()) for p in parts if p)

    @property
    def content_hash(self) -> str:
        return hashlib.sha256(self.normalized_text().encode("utf-8")).hexdigest()

    def merge(self, other: "PageExtract") -> None:
        """Fold a subpage's offerings and contact details into this page."""
        self.products = _unique(self.products + other.products)
        self.services = _unique(self.services + other.services)
        self.emails = list(dict.fromkeys(self.emails + other.emails))[:MAX_ITEMS]
        self.phones = list(dict.fromkeys(self.phones + other.phones))[:MAX_ITEMS]


def clean_text(s: Optional[str]) -> Optional[str]:
    if not s:
        return None
    s = html.unescape(s)
    s = unicodedata.normalize("NFKC", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s or None


def _unique(items, limit: int = MAX_ITEMS) -> List[str]:
    seen, out = set(), []
    for item in items:
        text = clean_text(item)
        if not text or len(text) > 120 or text.lower() in seen:
            continue
        seen.add(text.lower())
        out.append(text)
        if len(out) >= limit:
            break
    return out


def _meta(soup: BeautifulSoup, *names: str) -> Optional[str]:
    for name in names:
        tag = soup.find("meta", attrs={"name": name}) or soup.find("meta", attrs={"property": name})
        if tag and tag.get("content"):
            return clean_text(tag["content"])
    return None


def _marker(tag) -> str:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    return " ".join([tag.get("id") or "", *classes]).lower()


def _about(soup: BeautifulSoup) -> Optional[str]:
    for tag in soup.find_all(["section", "div", "article"]):
        if any(k in _marker(tag) for k in ABOUT_KEYWORDS):
            text = clean_text(tag.get_text(" "))
            if text:
                return text[:MAX_ABOUT]
    for heading in soup.find_all(["h1", "h2", "h3"]):
        label = (heading.get_text(" ") or "").lower()
        if any(k in label for k in ("about us", "om oss", "who we are")):
            para = heading.find_next("p")
            if para:
                return (clean_text(para.get_text(" ")) or "")[:MAX_ABOUT] or None
    return None


def _offerings(soup: BeautifulSoup, keywords) -> List[str]:
    found = []
    for link in soup.find_all("a", href=True):
        href = unquote(link["href"]).lower()
        if any(k in href for k in keywords):
            found.append(link.get_text(" "))
    for section in soup.find_all(["section", "div", "ul"]):
        if any(k in _marker(section) for k in keywords):
            found.extend(h.get_text(" ") for h in section.find_all(["h2", "h3", "h4", "li"]))
    for heading in soup.find_all(["h2", "h3"]):
        if any(k in heading.get_text(" ").lower() for k in keywords):
            found.append(heading.get_text(" "))
    return _unique(found)


def _emails(soup: BeautifulSoup, text: str) -> List[str]:
    found = []
    for link in soup.find_all("a", href=True):
        if link["href"].lower().startswith("mailto:"):
            found.append(link["href"][7:].split("?")[0])
    found.extend(m.group(0) for m in _EMAIL_RE.finditer(text))
    out = []
    for email in found:
        email = unquote(email).strip().lower()
        if not _EMAIL_RE.fullmatch(email) or email.endswith(_ASSET_SUFFIXES):
            continue
        if email.startswith("no-reply") or email.startswith("noreply"):
            continue
        if email not in out:
            out.append(email)
    return out[:MAX_ITEMS]


def _phones(soup: BeautifulSoup, text: str) -> List[str]:
    found = []
    for link in soup.find_all("a", href=True):
        if link["href"].lower().startswith("tel:"):
            found.append(link["href"][4:])
    found.extend(m.group(0) for m in _PHONE_RE.finditer(text))
    out, digits_seen = [], set()
    for phone in found:
        phone = clean_text(unquote(phone)) or ""
        digits = re.sub(r"\D", "", phone)
        if len(digits) < 8 or len(digits) > 15 or digits in digits_seen:
            continue
        digits_seen.add(digits)
        out.append(phone)
    return out[:MAX_ITEMS]


def extract_page(html_doc: str) -> PageExtract:
    soup = BeautifulSoup(html_doc, "html.parser")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()

    text = clean_text(soup.get_text(" ")) or ""
    title = clean_text(soup.title.get_text()) if soup.title else None

    return PageExtract(
        title=title,
        description=_meta(soup, "description", "og:description", "twitter:description"),
        about=_about(soup),
        products=_offerings(soup, PRODUCT_KEYWORDS),
        services=_offerings(soup, SERVICE_KEYWORDS),
        emails=_emails(soup, text),
        phones=_phones(soup, text),
        text=text[:5000],
    )


def subpage_links(html_doc: str, base_url: str, limit: int = 10) -> List[str]:
    """Same-site links whose path names a product or service page."""
    base = urlparse(base_url)
    soup = BeautifulSoup(html_doc, "html.parser")
    out = []
    for link in soup.find_all("a", href=True):
        href = link["href"].strip()
        if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
            continue
        url, _ = urldefrag(urljoin(base_url, href))
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or parsed.netloc.lower() != base.netloc.lower():
            continue
        path = unquote(parsed.path).lower()
        if not any(k in path for k in PRODUCT_KEYWORDS + SERVICE_KEYWORDS):
            continue
        if url.rstrip("/") != base_url.rstrip("/") and url not in out:
            out.append(url)
        if len(out) >= limit:
            break
    return out


def is_professional_email(email: str) -> bool:
    domain = email.rsplit("@", 1)[-1].lower()
    return bool(domain) and domain not in FREE_EMAIL_PROVIDERS


_ORG_NUMBER_RE = re.compile(
    r"(?:org\.?\s*(?:nr|nummer|no)\.?|organisasjonsnummer)\s*:?\s*(\d{3})[\s.]?(\d{3})[\s.]?(\d{3})(?!\d)",
    re.IGNORECASE,
)


def find_org_numbers(text: str) -> List[str]:
    """Norwegian organisation numbers written as 'org.nr 923 609 016' and variants."""
    found = []
    for match in _ORG_NUMBER_RE.finditer(text):
        number = "".join(match.groups())
        if number not in found:
            found.append(number)
    return found
