"""In-page scripts evaluated by the engine."""

from __future__ import annotations

# Samples at most ``size``×``size`` pixels of the first canvas. A pixel counts
# as painted when it is not fully transparent and not pure white. A canvas
# without a 2D context (WebGL-only) or a tainted canvas counts as painted.
CANVAS_PAINT_CHECK = """
(size) => {
  const canvas = document.querySelector('canvas');
  if (!canvas) return false;
  try {
    const ctx = canvas.getContext('2d');
    if (!ctx) return true;
    const w = Math.min(size, canvas.width);
    const h = Math.min(size, canvas.height);
    if (w === 0 || h === 0) return false;
    const data = ctx.getImageData(0, 0, w, h).data;
    for (let i = 0; i < data.length; i += 4) {
      const r = data[i], g = data[i + 1], b = data[i + 2], a = data[i + 3];
      if (a !== 0 && !(r === 255 && g === 255 && b === 255)) return true;
    }
    return false;
  } catch (e) {
    return true;
  }
}
"""

# Texts of clickable-looking elements in document order; the page is not touched.
COLLECT_CLICKABLE_TEXTS = """
(selector) => Array.from(document.querySelectorAll(selector))
  .map((el) => el.innerText || el.textContent || '')
"""

# Marks the index-th match of the selector so it can be clicked by attribute.
MARK_CLICK_TARGET = """
([selector, index, attribute]) => {
  const el = document.querySelectorAll(selector)[index];
  if (!el) return false;
  el.setAttribute(attribute, '');
  return true;
}
"""

UNMARK_CLICK_TARGET = """
(attribute) => {
  for (const el of document.querySelectorAll('[' + attribute + ']')) {
    el.removeAttribute(attribute);
  }
}
"""

OUTER_HTML = "(el) => el.outerHTML"
