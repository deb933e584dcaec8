"""
Stage prompts.

Every prompt asks for a single JSON object and nothing else. The
identification prompts also ask for the structured flags the validators
read first (image_text_match, confidence_score) before they fall back to
scanning the free-text feedback fields.
"""
from __future__ import annotations

import json
from typing import Any

from models import Category

# ── Category detection ────────────────────────────────────────────────────────

CATEGORY_PROMPT = """You are a product category classifier for a multi-category resale marketplace.
Your ONLY task is to decide the PRIMARY product category shown in the images.

CATEGORIES:
1. electronics — phones, laptops, tablets, cameras, headphones, smartwatches,
   consoles, TVs, monitors, drones, e-readers
2. fashion — clothing, footwear, bags, accessories, jewellery, fashion watches,
   sunglasses, belts, hats, scarves
3. other — furniture, home decor, books, toys, sports equipment, kitchen items,
   tools, collectibles, art

RULES:
- Several items from different categories → classify the PRIMARY / largest item
- Unsure between categories → "other"

Return ONLY a JSON object (no markdown, no prose):
{
  "category": "electronics" | "fashion" | "other",
  "confidence_score": 0-100,
  "detected_product_type": "brief description of what you see",
  "reasoning": "1-2 sentences explaining the classification"
}"""


# ── Identification ────────────────────────────────────────────────────────────

_IDENTIFICATION_RULES = """IMAGES vs TEXT:
1. Images are the primary source of truth; user text only fills gaps
2. If user text contradicts the images, trust the images, set
   "image_text_match": false and describe the conflict in clarity_feedback
3. If the images show several DIFFERENT products, do not identify them:
   describe them in possible_confusion and set confidence_score to 0
4. If the images are too unclear, say so in clarity_feedback, keep
   confidence_score below 50 and name the photo that would help"""

ELECTRONICS_PROMPT = f"""You are an expert electronics identification system.
Identify the product and extract ONLY the specifications that are visible or stated.
Unknown fields are null. Settings / "About phone" screens and model numbers are
the best evidence.

{_IDENTIFICATION_RULES}

Return ONLY a JSON object:
{{
  "identified_product": "full product name",
  "brand": "brand name",
  "model": "model name",
  "model_variant": "variant / model number if visible",
  "color_variants": "colour",
  "size": "screen size or dimensions",
  "ram": "RAM or null",
  "storage": "storage capacity or null",
  "processor": "processor if identifiable",
  "os_version": "OS version if visible",
  "carrier_lock_status": "unlocked | locked | unknown",
  "connectivity": "5G | 4G LTE | WiFi …",
  "condition_rating": "Excellent | Good | Fair | Poor",
  "condition_details": "description of visible wear",
  "product_condition": "new | used",
  "possible_confusion": "other products visible, or 'None'",
  "clarity_feedback": "image quality notes, or 'Clear, well-lit images'",
  "image_text_match": true | false,
  "preliminary_authenticity": "Likely Genuine | Uncertain | Possible Fake",
  "confidence_score": 0-100,
  "short_description": "2-3 sentences",
  "estimated_year": "YYYY or null",
  "estimated_price": "$XXX-$XXX or null"
}}

Visual analysis only: do not search the web."""

FASHION_PROMPT = f"""You are a fashion product identification system for resale marketplaces.
Always give your best identification; use "appears to be" / "likely" when unsure
and lower the confidence_score instead of refusing.

STEPS:
1. Gender: male | female | unisex (default unisex)
2. Specific type, e.g. "crew neck t-shirt", not "shirt"
3. Brand from logos, tags, labels, hardware; if not visible write
   "brand not clearly visible"
4. Condition: NWT | NWOT | like new | excellent / very good / good / fair
   pre-owned condition | poor condition
5. Material and size from tags; otherwise "size not visible in images"
6. Note counterfeit red flags (misspelt logos, poor stitching, cheap hardware)
   in clarity_feedback

{_IDENTIFICATION_RULES}

Return ONLY a JSON object:
{{
  "gender_category": "male | female | unisex",
  "identified_product": "Brand + item type",
  "brand": "brand or 'brand not clearly visible'",
  "brand_tier": "ultra-luxury | luxury | premium designer | athletic premium | athletic mainstream | streetwear | contemporary | fast fashion | unbranded",
  "category_type": "tops | bottoms | dresses | footwear | outerwear | accessories",
  "specific_category": "e.g. slim-fit jeans",
  "fit_style": "slim-fit | regular-fit | oversized | relaxed-fit | not applicable",
  "color_variants": "e.g. navy blue solid",
  "size": "M | 32x32 | size not visible in images",
  "material_composition": "e.g. 100% cotton",
  "distinctive_features": ["logo on chest", "…"],
  "product_condition": "new | used",
  "condition_rating": "one of the condition grades above",
  "condition_details": "visible wear",
  "possible_confusion": "other items visible, or 'None'",
  "clarity_feedback": "image quality notes",
  "image_text_match": true | false,
  "confidence_score": 0-100,
  "short_description": "one sentence",
  "estimated_year": "recent (1-2 years) or YYYY",
  "missing_details": ["details not visible, e.g. size tag"]
}}"""

OTHER_PROMPT = f"""You are a general product identification expert.
Identify the product in the images and extract the relevant details.

{_IDENTIFICATION_RULES}

Return ONLY a JSON object:
{{
  "identified_product": "product name and type",
  "brand": "brand name or Unknown",
  "model": "model name / number if applicable",
  "size": "dimensions or size",
  "color_variants": "primary colour",
  "material_composition": "materials",
  "distinctive_features": "notable features",
  "condition_rating": "New | Like New | Good | Fair | Poor",
  "condition_details": "condition description",
  "product_condition": "new | used",
  "possible_confusion": "other products visible, or 'None'",
  "clarity_feedback": "image quality notes",
  "image_text_match": true | false,
  "confidence_score": 0-100,
  "short_description": "brief description",
  "estimated_year": "year or null",
  "estimated_price": "$XXX-$XXX or null"
}}"""

_IDENTIFICATION_PROMPTS = {
    Category.ELECTRONICS: ELECTRONICS_PROMPT,
    Category.FASHION: FASHION_PROMPT,
    Category.OTHER: OTHER_PROMPT,
}


def identification_prompt(category: Category | str) -> str:
    try:
        return _IDENTIFICATION_PROMPTS[Category(category)]
    except ValueError:
        return OTHER_PROMPT


def _product_name(data: dict[str, Any]) -> str:
    return f"{data.get('brand') or ''} {data.get('model') or data.get('identified_product') or ''}".strip()


# ── Verification ──────────────────────────────────────────────────────────────

_VERIFICATION_OUTPUT = """Return ONLY a JSON object:
{
  "authenticity_status": "Authentic | Likely Genuine | Unknown | Suspicious | Possible Fake",
  "verification_confidence": 0-100,
  "specs_match": true | false,
  "mismatches": ["differences between the extracted and official details"],
  "authenticity_warnings": ["red flags or concerns"],
  "verification_summary": "2-3 sentence summary",
  "official_price": "original MSRP / retail price or 'Not available'",
  "estimated_year": "YYYY or null",
  "sources_checked": ["sources consulted"]
}"""


def verification_prompt(product: dict[str, Any], category: Category | str) -> str:
    """Web-search verification of the confirmed identification."""
    name = _product_name(product) or "the product"
    details = json.dumps(product, indent=2, default=str)
    category = Category(category)

    if category is Category.FASHION:
        focus = f"""You are a fashion authentication expert.
Assess whether this {name} is authentic using brand knowledge and web search:
logo font and placement, tags and labels, hardware finish and engravings,
construction and stitching, and whether the claimed brand tier
({product.get('brand_tier') or 'unknown'}) matches the observed quality.
If you cannot verify authenticity with confidence, say so."""
    elif category is Category.ELECTRONICS:
        focus = f"""You are an electronics authentication and verification expert.
Use web search to verify "{name}":
1. Find the official specifications (manufacturer site, GSMArena, NotebookCheck …)
2. Check the model variant exists and RAM / storage / colour combinations are real
3. Search for known counterfeits of this model and their tells
4. Find the original MSRP and release year"""
    else:
        focus = f"""You are a product verification expert for generic consumer goods.
Verify that "{name}" is a real product of the stated type, that the brand
(if any) makes it, that the condition rating is plausible, and that the
extracted details are consistent with each other."""

    return f"""{focus}

EXTRACTED DETAILS:
{details}

{_VERIFICATION_OUTPUT}"""


# ── Pricing ───────────────────────────────────────────────────────────────────

_MARKETPLACES = {
    Category.ELECTRONICS: ("ebay_market", "facebook_market", "swappa_market"),
    Category.FASHION: ("poshmark_market", "depop_market", "ebay_market"),
    Category.OTHER: ("ebay_market", "facebook_market", "craigslist_market"),
}


def pricing_prompt(product: dict[str, Any], category: Category | str) -> str:
    """Model-estimated resale pricing (web search enabled)."""
    category = Category(category)
    name = _product_name(product) or "the product"
    condition = product.get("condition_rating") or "unknown"
    markets = ",\n".join(
        f'  "{m}": {{"lowest": "$XX", "highest": "$XX", "average": "$XX", "sample_size": 0}}'
        for m in _MARKETPLACES[category]
    )
    return f"""You are a resale pricing expert for the US market.

PRODUCT TO PRICE:
- Product: {name}
- Category: {category.value}
- Condition: {condition}
- Authenticity: {product.get('authenticity_status') or 'not verified'}

Research current asking and sold prices on US resale marketplaces. Discard
obvious outliers. Depreciating items: price to sell fast. Appreciating or
collectible items: protect value. Be conservative when data is thin.

DETAILS:
{json.dumps(product, indent=2, default=str)}

Return ONLY a JSON object; every price is a string with a $ sign:
{{
{markets},
  "recommended_price": {{
    "typical_resale_price": "$XXX",
    "price_range": "$XXX - $XXX",
    "confidence": "High | Medium | Low",
    "reasoning": "brief explanation"
  }},
  "original_retail_price": "$XXX or 'Not available'",
  "pricing_strategy": "sell-fast or value-protection, one sentence",
  "platform_recommendations": [{{"platform": "eBay", "reason": "…"}}],
  "seasonal_pricing_guidance": "holiday vs off-season note",
  "data_quality": "High | Medium | Low"
}}"""
