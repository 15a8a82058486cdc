"""Page data container and HTML extraction helpers.

Uses BeautifulSoup to pull the pieces of a page the rubric looks at:
- Visible body text with scripts/styles removed
- Hero copy (H1, subheading, first paragraph) from common hero containers
- Call-to-action elements with their position relative to the fold
- Story/about copy for brand narrative evaluation
"""

import re
from dataclasses import dataclass, field
from functools import cached_property

from bs4 import BeautifulSoup, Tag

# Hero containers, most specific first
HERO_SELECTORS = [
    ".hero",
    "#hero",
    '[class*="hero"]',
    ".banner",
    "#banner",
    '[class*="banner"]',
    ".jumbotron",
    ".masthead",
    ".header-content",
    "header section",
    "main > section",
]

STORY_SELECTORS = [
    '[class*="about"]',
    '[id*="about"]',
    '[class*="mission"]',
    '[id*="mission"]',
    '[class*="story"]',
    '[id*="story"]',
    '[class*="values"]',
    ".intro",
]

NON_CONTENT_TAGS = ["script", "style", "noscript", "template", "svg"]

CTA_VERB_PATTERN = re.compile(
    r"^(get|start|try|buy|sign|join|book|request|schedule|contact|talk|download|"
    r"subscribe|shop|order|learn|see|watch|explore|claim|register)\b",
    re.IGNORECASE,
)
CTA_CLASS_PATTERN = re.compile(r"(btn|button|cta|call-to-action)", re.IGNORECASE)
PRIMARY_CTA_PHRASES = ("get started", "start free", "try now", "buy now", "sign up", "book a demo")

MAX_PROMPT_CONTENT_CHARS = 4000


@dataclass
class PageData:
    """Everything fetched for one target; the input to every tier.

    An empty ``html`` means the scrape failed and tier 1 floors to zero.
    """

    url: str
    html: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    screenshot_url: str | None = None
    full_page_screenshot_url: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.html.strip()

    @cached_property
    def soup(self) -> BeautifulSoup:
        return BeautifulSoup(self.html or "", "html.parser")

    @cached_property
    def text(self) -> str:
        return visible_text(self.soup)

    def header(self, name: str) -> str:
        """Case-insensitive response header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return ""


@dataclass
class HeroContent:
    headline: str = ""
    subheading: str = ""
    paragraph: str = ""
    found_container: bool = False

    @property
    def combined(self) -> str:
        return " ".join(part for part in (self.headline, self.subheading, self.paragraph) if part)

    @property
    def headline_words(self) -> int:
        return len(self.headline.split())


@dataclass
class CallToAction:
    text: str
    tag: str
    href: str | None
    classes: str
    above_fold: bool

    @property
    def is_primary(self) -> bool:
        lowered = self.text.lower()
        return (
            "primary" in self.classes
            or "main" in self.classes
            or self.tag == "button"
            or any(
                phrase in lowered
                for phrase in PRIMARY_CTA_PHRASES
            )
        )

    @property
    def is_secondary(self) -> bool:
        lowered = self.text.lower()
        return "secondary" in self.classes or any(
            phrase in lowered
            for phrase in ("learn more", "see how", "watch demo", "contact", "explore")
        )


def element_text(element: Tag) -> str:
    return element.get_text(" ", strip=True)


def class_and_id(element: Tag) -> str:
    """Lower-cased class list and id of an element as one string."""
    classes = element.get("class") or []
    if isinstance(classes, str):
        classes = [classes]
    return " ".join([*classes, element.get("id") or ""]).lower()


def visible_text(soup: BeautifulSoup) -> str:
    """Body text without scripts, styles or inline SVG."""
    copy = BeautifulSoup(str(soup), "html.parser")
    for tag in copy(NON_CONTENT_TAGS):
        tag.decompose()
    return re.sub(r"\s+", " ", copy.get_text(" ", strip=True))


def find_hero(soup: BeautifulSoup) -> Tag | None:
    for selector in HERO_SELECTORS:
        match = soup.select_one(selector)
        if match is not None:
            return match
    return None


def extract_hero(soup: BeautifulSoup) -> HeroContent:
    """Headline, subheading and lead paragraph of the hero section."""
    h1 = soup.find("h1")
    headline = element_text(h1) if h1 else ""
    hero = find_hero(soup)

    if hero is not None:
        sub = hero.find(["h2", "h3"])
        para = hero.find("p")
        return HeroContent(
            headline=headline or (element_text(sub) if sub else ""),
            subheading=element_text(sub) if sub else "",
            paragraph=element_text(para) if para else "",
            found_container=True,
        )

    sub = soup.find("h2")
    para = next(
        (p for p in soup.find_all("p") if len(element_text(p)) >= 20),
        None,
    )
    return HeroContent(
        headline=headline,
        subheading=element_text(sub) if sub else "",
        paragraph=element_text(para) if para else "",
    )


def _looks_like_cta(element: Tag, text: str) -> bool:
    if element.name == "button":
        return True
    if element.name == "input":
        return element.get("type", "").lower() == "submit"
    return bool(CTA_CLASS_PATTERN.search(class_and_id(element)) or CTA_VERB_PATTERN.match(text))


def extract_ctas(soup: BeautifulSoup) -> list[CallToAction]:
    """Unique calls to action in document order.

    A CTA is above the fold when it sits in the header or hero container, or
    precedes the first H2 on the page.
    """
    hero = find_hero(soup)
    header = soup.find("header")
    seen: set[str] = set()
    ctas: list[CallToAction] = []

    for element in soup.find_all(["a", "button", "input"]):
        if element.name == "input":
            text = (element.get("value") or "").strip()
        else:
            text = element_text(element)
        if not text or len(text) >= 100 or not _looks_like_cta(element, text):
            continue
        key = text.lower()
        if key in seen:
            continue
        seen.add(key)

        in_container = any(
            container is not None and (element is container or container in element.parents)
            for container in (hero, header)
        )
        ctas.append(
            CallToAction(
                text=text,
                tag=element.name,
                href=element.get("href"),
                classes=class_and_id(element),
                above_fold=in_container or element.find_previous("h2") is None,
            )
        )

    return ctas


def extract_story_text(soup: BeautifulSoup) -> str:
    """Hero plus about/mission copy, truncated for prompts."""
    parts = [extract_hero(soup).combined]
    for selector in STORY_SELECTORS:
        for match in soup.select(selector)[:2]:
            text = element_text(match)
            if text and text not in parts:
                parts.append(text)
    if len(" ".join(parts)) < 200:
        parts.extend(element_text(p) for p in soup.find_all("p")[:8])
    return " ".join(part for part in parts if part)[:MAX_PROMPT_CONTENT_CHARS]
