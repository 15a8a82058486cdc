"""Tier 1 heuristics: deterministic scoring straight from HTML and headers.

Each scorer takes the fetched PageData plus ScoringConfig and returns an
Assessment whose point components add up to at most 10. Scorers assume the
page has content; the rubric short-circuits empty pages before calling them.
"""

import re
from datetime import UTC, datetime
from urllib.parse import urlparse

from bs4 import BeautifulSoup, Tag

from app.services.content_extraction import (
    STORY_SELECTORS,
    PageData,
    class_and_id,
    element_text,
    extract_ctas,
    extract_hero,
)
from app.services.scoring import Assessment, ScoringConfig

AUDIENCE_PATTERN = re.compile(
    r"\b(built for|designed for|made for|perfect for|trusted by)\b|"
    r"\bfor\s+(?:[\w-]+\s+){0,3}(teams|businesses|companies|agencies|startups|"
    r"enterprises|developers|marketers|founders|brands|retailers|professionals|"
    r"owners|leaders|organizations|families|creators|clinics|practices|contractors)\b",
    re.IGNORECASE,
)
OUTCOME_PATTERN = re.compile(
    r"\b(increase|grow|save|reduce|boost|improve|double|triple|cut|win|convert|"
    r"scale|accelerate|eliminate|revenue|roi|profit)\w*\b|\bfaster\b|\d+\s?%|\b\d+x\b",
    re.IGNORECASE,
)
CAPABILITY_PATTERN = re.compile(
    r"\b(helps?|lets?|enables?|platform|software|tool|service|app|automates?|"
    r"manages?|tracks?|builds?|creates?|provides?|delivers?|designs?|connects?|"
    r"simplif(y|ies)|solutions?|agency|studio)\b",
    re.IGNORECASE,
)
TESTIMONIAL_PATTERN = re.compile(
    r"testimonial|what (our )?(customers|clients|users) (say|are saying)|"
    r"\breviews?\b|rated \d|★",
    re.IGNORECASE,
)
CASE_STUDY_PATTERN = re.compile(
    r"case stud(y|ies)|success stor(y|ies)|customer stor(y|ies)", re.IGNORECASE
)
CERTIFICATION_PATTERN = re.compile(
    r"\b(SOC ?2|ISO ?27001|GDPR|HIPAA|PCI[ -]?DSS|SSL|certified|accredited|"
    r"award[- ]winning|BBB|secure checkout)\b",
    re.IGNORECASE,
)
SCALE_PATTERN = re.compile(
    r"\b\d[\d,.]*\s*[km]?\+?\s*(customers|clients|users|businesses|companies|"
    r"teams|downloads|reviews|members|countries|projects|installs)\b",
    re.IGNORECASE,
)
YEAR_PATTERN = re.compile(r"\b(20\d{2})\b")
LOGO_CONTAINER_PATTERN = re.compile(
    r"(logos|clients|partners|customers|trusted|brands|featured|press)"
)
POV_PATTERN = re.compile(
    r"\b(we believe|our mission|we're on a mission|our vision|why we|we think|"
    r"shouldn't have to|tired of|the problem with|we started)\b",
    re.IGNORECASE,
)
MECHANISM_PATTERN = re.compile(
    r"\b(our approach|how it works|our process|our method|framework|"
    r"step \d|three steps|proprietary|methodology)\b",
    re.IGNORECASE,
)
PROOF_PATTERN = re.compile(
    r"testimonial|case stud|trusted by|customers|clients|reviews?|rated|award",
    re.IGNORECASE,
)
ABOUT_HEADING_PATTERN = re.compile(r"about|our story|mission|who we are", re.IGNORECASE)
MODERN_CSS_PATTERN = re.compile(r"display:\s*(flex|grid)|@media|var\(--", re.IGNORECASE)
MODERN_CLASS_PATTERN = re.compile(r"\b(flex|grid|container|row|col-\w+|md:|lg:)")
SEMANTIC_ELEMENTS = ("header", "nav", "main", "section", "article", "aside", "footer")
LANDMARK_ROLES = {"main", "navigation", "banner", "contentinfo"}
UNLABELED_INPUT_TYPES = {"hidden", "submit", "button", "image", "reset"}
COMPRESSION_ENCODINGS = ("gzip", "br", "deflate", "zstd")


def _count_matches(pattern: re.Pattern[str], text: str) -> int:
    return sum(1 for _ in pattern.finditer(text))


def _find_buzzwords(text: str, buzzwords: tuple[str, ...]) -> list[str]:
    lowered = text.lower()
    return [
        word
        for word in buzzwords
        if re.search(rf"(?<!\w){re.escape(word.lower())}(?!\w)", lowered)
    ]


def _image_alt_ratio(soup: BeautifulSoup) -> float | None:
    images = soup.find_all("img")
    if not images:
        return None
    with_alt = [img for img in images if (img.get("alt") or "").strip()]
    return len(with_alt) / len(images)


def _is_recent_year(year: int, recent_months: int, now: datetime) -> bool:
    months_ago = (now.year - year) * 12 + now.month - 12
    return year <= now.year and months_ago <= recent_months


def score_positioning(page: PageData, config: ScoringConfig) -> Assessment:
    hero = extract_hero(page.soup)
    text = hero.combined
    a = Assessment(
        evidence={
            "headline": hero.headline,
            "subheading": hero.subheading,
            "headline_words": hero.headline_words,
        }
    )

    a.check("audience_named", bool(AUDIENCE_PATTERN.search(text)), 2.5)
    a.check("outcome_present", bool(OUTCOME_PATTERN.search(text)), 2.5)
    a.check(
        "capability_clear",
        bool(hero.headline) and bool(CAPABILITY_PATTERN.search(text)),
        2.5,
    )
    a.check("brevity_check", 1 <= hero.headline_words <= config.hero_words, 2.5)

    buzzwords = _find_buzzwords(text, config.buzzwords)
    a.evidence["buzzwords"] = buzzwords
    if buzzwords:
        a.penalize("buzzword_free", 0.5 * len(buzzwords))
    return a


def _has_modern_styling(soup: BeautifulSoup) -> bool:
    inline_css = " ".join(style.get_text() for style in soup.find_all("style"))
    if MODERN_CSS_PATTERN.search(inline_css):
        return True
    return any(
        MODERN_CLASS_PATTERN.search(class_and_id(element))
        for element in soup.find_all(class_=True, limit=200)
    )


def score_ux(page: PageData, config: ScoringConfig) -> Assessment:
    soup = page.soup
    a = Assessment()

    semantic = [name for name in SEMANTIC_ELEMENTS if soup.find(name) is not None]
    a.evidence["semantic_elements"] = semantic
    if len(semantic) >= 5:
        layout = 2.5
    elif len(semantic) >= 3:
        layout = 1.5
    elif semantic:
        layout = 0.5
    else:
        layout = 0.0
    a.grade("semantic_layout", layout, 2.5)

    viewport = soup.find("meta", attrs={"name": "viewport"})
    viewport_content = (viewport.get("content") or "") if viewport else ""
    a.check(
        "mobile_viewport",
        "device-width" in viewport_content,
        2.0,
        partial=1.0,
        partial_condition=viewport is not None,
    )

    a.check(
        "navigation",
        soup.find("nav") is not None or soup.find(attrs={"role": "navigation"}) is not None,
        1.5,
    )

    interactive = len(soup.find_all(["a", "button", "input", "select", "textarea", "details"]))
    a.evidence["interactive_elements"] = interactive
    a.check(
        "interactivity", interactive >= 10, 1.5, partial=0.75, partial_condition=interactive >= 3
    )

    a.check("modern_styling", _has_modern_styling(soup), 1.0)

    footer = soup.find("footer")
    footer_links = len(footer.find_all("a")) if footer else 0
    a.check("footer_links", footer_links >= 5, 1.0)

    paragraphs = [element_text(p) for p in soup.find_all("p")]
    paragraphs = [p for p in paragraphs if p]
    mean_words = (
        sum(len(p.split()) for p in paragraphs) / len(paragraphs) if paragraphs else 0
    )
    a.check("readable_paragraphs", 0 < mean_words <= 120, 0.5)
    return a


def _count_logos(soup: BeautifulSoup) -> int:
    count = 0
    for img in soup.find_all("img"):
        if img.find_parent("header") is not None:
            continue
        alt = (img.get("alt") or "").lower()
        containers = [img, *list(img.parents)[:3]]
        if "logo" in alt or any(
            isinstance(node, Tag) and LOGO_CONTAINER_PATTERN.search(class_and_id(node))
            for node in containers
        ):
            count += 1
    return count


def score_trust(page: PageData, config: ScoringConfig) -> Assessment:
    soup = page.soup
    text = page.text
    a = Assessment()

    testimonials = bool(
        soup.select('[class*="testimonial"], [class*="review"], blockquote')
        or TESTIMONIAL_PATTERN.search(text)
    )
    a.check("testimonials", testimonials, 2.0)

    logos = _count_logos(soup)
    a.evidence["logo_count"] = logos
    a.check("client_logos", logos >= 3, 2.0, partial=1.0, partial_condition=logos >= 1)

    a.check("case_studies", bool(CASE_STUDY_PATTERN.search(text)), 2.0)

    certifications = sorted({m.group(0) for m in CERTIFICATION_PATTERN.finditer(text)})
    a.evidence["certifications"] = certifications
    a.check("certifications", bool(certifications), 1.5)

    now = datetime.now(UTC)
    years = {int(y) for y in YEAR_PATTERN.findall(text)}
    recent = sorted(y for y in years if _is_recent_year(y, config.recent_months, now))
    a.evidence["recent_years"] = recent
    a.check("recent_content", bool(recent), 1.5)

    scale = SCALE_PATTERN.search(text)
    a.evidence["scale_claim"] = scale.group(0) if scale else None
    a.check("scale_claims", scale is not None, 1.0)
    return a


def _has_destination(href: str | None) -> bool:
    if not href:
        return False
    href = href.strip()
    return bool(href) and href != "#" and not href.lower().startswith("javascript:")


def score_ctas(page: PageData, config: ScoringConfig) -> Assessment:
    soup = page.soup
    ctas = extract_ctas(soup)
    a = Assessment(evidence={"cta_texts": [c.text for c in ctas[:10]]})

    above_fold = [c for c in ctas if c.above_fold]
    a.evidence["above_fold_count"] = len(above_fold)
    a.check(
        "above_fold_cta",
        len(above_fold) >= 2,
        3.0,
        partial=2.0,
        partial_condition=len(above_fold) == 1,
    )

    primaries = [c for c in ctas if c.is_primary]
    a.evidence["primary_count"] = len(primaries)
    a.check(
        "primary_hierarchy",
        1 <= len(primaries) <= 3,
        2.5,
        partial=1.5,
        partial_condition=len(primaries) > 3,
    )

    a.check("secondary_paths", any(c.is_secondary and not c.is_primary for c in ctas), 2.0)

    links = [c for c in ctas if c.tag == "a"]
    with_destination = [c for c in links if _has_destination(c.href)]
    a.check(
        "cta_destination",
        bool(links) and len(with_destination) == len(links),
        1.5,
        partial=0.75,
        partial_condition=bool(with_destination),
    )

    forms = soup.find_all("form")
    has_submit = any(
        form.find("button") is not None or form.find("input", attrs={"type": "submit"}) is not None
        for form in forms
    )
    a.check("form_cta", has_submit, 1.0, partial=0.5, partial_condition=bool(forms))
    return a


def _proof_near_outcome(text: str, window: int) -> bool:
    """Whether a proof mention sits within ``window`` characters of an outcome claim.

    Character distance in visible text stands in for rendered pixel distance.
    """
    proofs = [m.start() for m in PROOF_PATTERN.finditer(text)]
    if not proofs:
        return False
    return any(
        abs(claim.start() - proof) <= window
        for claim in OUTCOME_PATTERN.finditer(text)
        for proof in proofs
    )


def _has_about_section(soup: BeautifulSoup) -> bool:
    if any(soup.select_one(selector) is not None for selector in STORY_SELECTORS):
        return True
    if any(
        ABOUT_HEADING_PATTERN.search(element_text(h))
        for h in soup.find_all(["h1", "h2", "h3"])
    ):
        return True
    return any("/about" in (link.get("href") or "") for link in soup.find_all("a"))


def score_brand_story(page: PageData, config: ScoringConfig) -> Assessment:
    text = page.text
    a = Assessment()

    a.check("pov_present", bool(POV_PATTERN.search(text)), 2.0)
    a.check("mechanism_named", bool(MECHANISM_PATTERN.search(text)), 2.0)

    outcomes = _count_matches(OUTCOME_PATTERN, text)
    a.evidence["outcome_mentions"] = outcomes
    a.check("outcomes_present", outcomes >= 1, 2.0)

    a.check(
        "proof_near_claims",
        _proof_near_outcome(text, config.proof_distance_px),
        2.0,
        partial=1.0,
        partial_condition=bool(PROOF_PATTERN.search(text)),
    )
    a.check("about_section", _has_about_section(page.soup), 2.0)
    return a


def _needs_label(element: Tag) -> bool:
    if element.name != "input":
        return True
    return (element.get("type") or "text").lower() not in UNLABELED_INPUT_TYPES


def _is_labeled(element: Tag, label_targets: set[str]) -> bool:
    return bool(
        (element.get("id") and element.get("id") in label_targets)
        or element.get("aria-label")
        or element.get("aria-labelledby")
        or element.get("title")
        or element.find_parent("label") is not None
    )


def _heading_jumps(soup: BeautifulSoup) -> tuple[list[int], int]:
    levels = [int(h.name[1]) for h in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])]
    jumps = sum(1 for prev, cur in zip(levels, levels[1:]) if cur - prev > 1)
    return levels, jumps


def score_accessibility(page: PageData, config: ScoringConfig) -> Assessment:
    soup = page.soup
    a = Assessment()

    html = soup.find("html")
    a.check("lang_attribute", bool(html and (html.get("lang") or "").strip()), 1.5)

    alt_ratio = _image_alt_ratio(soup)
    a.evidence["alt_ratio"] = None if alt_ratio is None else round(alt_ratio, 2)
    a.check(
        "image_alt_text",
        alt_ratio is None or alt_ratio >= 0.9,
        2.0,
        partial=1.0,
        partial_condition=alt_ratio is not None and alt_ratio >= 0.6,
    )

    fields = [f for f in soup.find_all(["input", "select", "textarea"]) if _needs_label(f)]
    label_targets = {label.get("for") for label in soup.find_all("label") if label.get("for")}
    labeled = [f for f in fields if _is_labeled(f, label_targets)]
    label_ratio = len(labeled) / len(fields) if fields else 1.0
    a.check(
        "form_labels",
        label_ratio >= 0.9,
        1.5,
        partial=0.75,
        partial_condition=label_ratio >= 0.5,
    )

    landmarks = {name for name in ("main", "nav", "header", "footer") if soup.find(name)}
    landmarks |= {
        element.get("role") for element in soup.find_all(attrs={"role": True})
        if element.get("role") in LANDMARK_ROLES
    }
    a.check(
        "landmarks",
        len(landmarks) >= 3,
        1.5,
        partial=0.75,
        partial_condition=bool(landmarks),
    )

    skip_link = any(
        (link.get("href") or "").startswith("#") and "skip" in element_text(link).lower()
        for link in soup.find_all("a")
    )
    a.check("skip_link", skip_link, 1.0)

    levels, jumps = _heading_jumps(soup)
    a.check(
        "heading_order",
        bool(levels) and levels[0] == 1 and jumps == 0,
        1.5,
        partial=0.75,
        partial_condition=bool(levels) and jumps <= 1,
    )

    buttons = soup.find_all("button")
    a.check(
        "button_names",
        all(
            element_text(b) or b.get("aria-label") or b.get("title")
            for b in buttons
        ),
        1.0,
    )
    return a


def score_seo(page: PageData, config: ScoringConfig) -> Assessment:
    soup = page.soup
    a = Assessment()

    title = element_text(soup.title) if soup.title else ""
    a.evidence["title_length"] = len(title)
    a.check(
        "title_length", 30 <= len(title) <= 70, 1.5, partial=0.75, partial_condition=bool(title)
    )

    meta = soup.find("meta", attrs={"name": re.compile(r"^description$", re.IGNORECASE)})
    description = (meta.get("content") or "").strip() if meta else ""
    a.evidence["description_length"] = len(description)
    a.check(
        "meta_description",
        120 <= len(description) <= 200,
        1.5,
        partial=0.75,
        partial_condition=bool(description),
    )

    h1_count = len(soup.find_all("h1"))
    a.evidence["h1_count"] = h1_count
    a.check("single_h1", h1_count == 1, 1.5)

    a.check("canonical", soup.find("link", rel="canonical") is not None, 1.0)

    robots = soup.find("meta", attrs={"name": re.compile(r"^robots$", re.IGNORECASE)})
    robots_directives = " ".join(
        [(robots.get("content") or "") if robots else "", page.header("x-robots-tag")]
    ).lower()
    a.check("indexable", "noindex" not in robots_directives, 1.0)

    social = soup.find("meta", attrs={"property": re.compile(r"^og:")}) or soup.find(
        "meta", attrs={"name": re.compile(r"^twitter:")}
    )
    a.check("social_tags", social is not None, 1.0)

    a.check(
        "structured_data",
        soup.find("script", attrs={"type": "application/ld+json"}) is not None,
        1.0,
    )

    alt_ratio = _image_alt_ratio(soup)
    a.check("image_alt_ratio", alt_ratio is None or alt_ratio >= 0.8, 1.0)

    parsed = urlparse(page.url)
    clean = not parsed.query and "_" not in parsed.path and len(page.url) < 100
    a.check("clean_url", clean, 0.5)
    return a


def score_speed_static(page: PageData, config: ScoringConfig) -> Assessment:
    soup = page.soup
    a = Assessment()

    html_kb = round(len(page.html.encode("utf-8")) / 1024, 1)
    a.evidence["html_kb"] = html_kb
    if html_kb < 100:
        weight = 2.5
    elif html_kb < 250:
        weight = 1.5
    elif html_kb < 500:
        weight = 0.5
    else:
        weight = 0.0
    a.grade("html_weight", weight, 2.5)

    scripts = [
        s for s in soup.find_all("script")
        if (s.get("type") or "").lower() != "application/ld+json"
    ]
    a.evidence["script_count"] = len(scripts)
    a.grade("script_count", 2.0 if len(scripts) <= 10 else 1.0 if len(scripts) <= 25 else 0.0, 2.0)

    head = soup.find("head")
    blocking = [
        s for s in (head.find_all("script", src=True) if head else [])
        if not s.has_attr("async") and not s.has_attr("defer")
        and (s.get("type") or "").lower() != "module"
    ]
    a.evidence["render_blocking_scripts"] = len(blocking)
    a.check("render_blocking", len(blocking) <= 2, 1.5)

    stylesheets = soup.find_all("link", rel="stylesheet")
    a.evidence["stylesheet_count"] = len(stylesheets)
    a.grade(
        "stylesheet_count",
        1.0 if len(stylesheets) <= 5 else 0.5 if len(stylesheets) <= 10 else 0.0,
        1.0,
    )

    images = soup.find_all("img")
    lazy = [img for img in images if (img.get("loading") or "").lower() == "lazy"]
    a.check(
        "lazy_images",
        len(images) <= 3 or len(lazy) >= len(images) / 2,
        1.5,
        partial=0.75,
        partial_condition=bool(lazy),
    )

    encoding = page.header("content-encoding").lower()
    a.check("compression", any(e in encoding for e in COMPRESSION_ENCODINGS), 1.0)

    cache_control = page.header("cache-control").lower()
    max_age = re.search(r"max-age=(\d+)", cache_control)
    a.check(
        "cache_headers",
        bool(max_age and int(max_age.group(1)) > 0) or "immutable" in cache_control,
        0.5,
    )
    return a
