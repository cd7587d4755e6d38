# src/menu_crawler/extractors/html.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from playwright.async_api import Page

from menu_crawler.extractors.base import BaseExtractor
from menu_crawler.models import Extraction, ExtractionMethod

logger = logging.getLogger(__name__)

# Two groups of words that show up on nearly every German or English drinks menu.
PRIMARY_TERMS = ["Wasser", "Mineralwasser", "Water"]
SECONDARY_TERMS = ["Cola", "Kaffee"]

SEPARATOR = " > "
_CSS_IDENT_SAFE = re.compile(r"[A-Za-z0-9_\-\u00a0-\uffff]")

# First element (in document order) whose own text contains one of the terms.
# Returns the path from the child of <body> down to it, one entry per level.
_FIND_ANCHOR_JS = """
(terms) => {
  const upper = 'ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÜ';
  const lower = 'abcdefghijklmnopqrstuvwxyzäöü';
  const test = terms
    .map((t) => `contains(translate(., '${upper}', '${lower}'), '${t}')`)
    .join(' or ');
  const xpath = `//body//text()[(${test}) and not(ancestor::script) and not(ancestor::style) and not(ancestor::noscript)]/parent::*`;
  const el = document.evaluate(
    xpath, document, null, XPathResult.FIRST_ORDERED_NODE_TYPE, null,
  ).singleNodeValue;
  if (!el) {
    return null;
  }

  const levels = [];
  let node = el;
  while (node && node.parentElement && node.tagName.toLowerCase() !== 'body') {
    const parent = node.parentElement;
    let index = 1;
    let sameTag = 0;
    for (const sibling of parent.children) {
      if (sibling.tagName === node.tagName) {
        sameTag++;
        if (sibling === node) {
          index = sameTag;
        }
      }
    }
    levels.unshift({
      tag: node.tagName.toLowerCase(),
      id: node.id || '',
      classes: Array.from(node.classList),
      index: index,
      sameTag: sameTag,
    });
    node = parent;
  }

  const text = Array.from(el.childNodes)
    .filter((n) => n.nodeType === Node.TEXT_NODE)
    .map((n) => n.textContent.trim())
    .filter(Boolean)
    .join(' ');
  return { levels, text };
}
"""

_TEST_SELECTOR_JS = """
([selector, primary, secondary]) => {
  let elements;
  try {
    elements = Array.from(document.querySelectorAll(selector));
  } catch (e) {
    return false;
  }
  const texts = elements.map((el) =>
    Array.from(el.childNodes)
      .filter((n) => n.nodeType === Node.TEXT_NODE)
      .map((n) => n.textContent.trim())
      .filter(Boolean)
      .join(' ')
      .toLowerCase(),
  );
  const p = primary.toLowerCase();
  const s = secondary.toLowerCase();
  return texts.some((t) => t.includes(p)) && texts.some((t) => t.includes(s));
}
"""

_EXTRACT_DATA_JS = """
(selector) => Array.from(document.querySelectorAll(selector))
  .map((el) => Array.from(el.childNodes)
    .filter((n) => n.nodeType === Node.TEXT_NODE)
    .map((n) => n.textContent.trim())
    .filter(Boolean)
    .join(' ')
    .trim())
  .filter(Boolean)
"""


def css_escape(ident: str) -> str:
    """Escape an id or class name for use in a CSS selector."""
    if ident == "-":
        return "\\-"
    out = []
    for i, ch in enumerate(ident):
        if "0" <= ch <= "9" and (i == 0 or (i == 1 and ident[0] == "-")):
            out.append(f"\\{ord(ch):x} ")
        elif _CSS_IDENT_SAFE.match(ch):
            out.append(ch)
        else:
            out.append("\\" + ch)
    return "".join(out)


@dataclass(frozen=True)
class PathStep:
    """One level of a structural path: a tag plus an optional #id / .class / :nth-of-type qualifier."""
    tag: str
    qualifier: str = ""

    @classmethod
    def from_level(cls, level: Dict[str, Any]) -> "PathStep":
        tag = str(level["tag"]).lower()
        if level.get("id"):
            return cls(tag, "#" + css_escape(level["id"]))
        classes = level.get("classes") or []
        if classes:
            return cls(tag, "".join("." + css_escape(c) for c in classes))
        if int(level.get("sameTag") or 0) > 1:
            return cls(tag, f":nth-of-type({int(level['index'])})")
        return cls(tag)

    def generalized(self) -> "PathStep":
        return PathStep(self.tag)

    def render(self) -> str:
        return self.tag + self.qualifier


def render_selector(steps: Sequence[PathStep]) -> str:
    return SEPARATOR.join(step.render() for step in steps)


def merge_paths(first: Sequence[PathStep], second: Sequence[PathStep]) -> List[PathStep]:
    """
    Combine two paths level by level (up to the shorter one).
    Identical levels are kept; differing levels fall back to the first path's bare tag.
    """
    merged = []
    for a, b in zip(first, second):
        merged.append(a if a == b else a.generalized())
    return merged


def simplify(steps: Sequence[PathStep]) -> Optional[List[PathStep]]:
    """Strip the deepest remaining qualifier. None when there is nothing left to strip."""
    steps = list(steps)
    for i in range(len(steps) - 1, -1, -1):
        if steps[i].qualifier:
            steps[i] = steps[i].generalized()
            return steps
    return None


@dataclass
class Anchor:
    path: List[PathStep]
    text: str


class HtmlExtractor(BaseExtractor):
    """
    Finds the markup that repeats once per menu item, without per-site rules.

    Bottom-up: locate one element holding a "primary" term and one holding a
    "secondary" term, merge their DOM paths into a selector, then keep removing
    qualifiers from the deepest level upward while the selector still matches both.
    """

    method = ExtractionMethod.HTML

    def __init__(
        self,
        primary_terms: Sequence[str] = PRIMARY_TERMS,
        secondary_terms: Sequence[str] = SECONDARY_TERMS,
    ) -> None:
        self._primary_terms = [t.lower() for t in primary_terms]
        self._secondary_terms = [t.lower() for t in secondary_terms]

    async def try_extract(self, page: Page, resource: Optional[str] = None) -> Optional[Extraction]:
        selector = resource or await self.get_selector(page)
        if not selector:
            logger.debug("No HTML selector found on %s", page.url)
            return None

        data = await self.extract_data(page, selector)
        if not data:
            logger.debug("Selector %r matched no text on %s", selector, page.url)
            return None

        logger.info("HTML selector %r yielded %d items on %s", selector, len(data), page.url)
        return Extraction(data=data, resource=selector)

    async def get_selector(self, page: Page) -> Optional[str]:
        primary = await self._find_anchor(page, self._primary_terms)
        if primary is None:
            return None
        secondary = await self._find_anchor(page, self._secondary_terms)
        if secondary is None:
            return None

        candidate: Optional[List[PathStep]] = merge_paths(primary.path, secondary.path)
        if not candidate:
            return None

        last_valid: Optional[List[PathStep]] = None
        while candidate and await self._test_selector(page, render_selector(candidate), primary.text, secondary.text):
            last_valid = candidate
            candidate = simplify(last_valid)

        if last_valid is None:
            logger.debug("Merged selector %r did not validate", render_selector(merge_paths(primary.path, secondary.path)))
            return None
        return render_selector(last_valid)

    async def extract_data(self, page: Page, selector: str) -> List[str]:
        """Trimmed, non-empty own text of every element matching `selector`, in document order."""
        texts = await page.evaluate(_EXTRACT_DATA_JS, selector)
        return [t.strip() for t in texts if t and t.strip()]

    async def _find_anchor(self, page: Page, terms: Sequence[str]) -> Optional[Anchor]:
        found = await page.evaluate(_FIND_ANCHOR_JS, list(terms))
        if not found:
            return None
        return Anchor(
            path=[PathStep.from_level(level) for level in found["levels"]],
            text=found.get("text") or "",
        )

    async def _test_selector(self, page: Page, selector: str, primary: str, secondary: str) -> bool:
        return bool(await page.evaluate(_TEST_SELECTOR_JS, [selector, primary, secondary]))
