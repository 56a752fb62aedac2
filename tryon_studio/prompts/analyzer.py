"""Analyzer prompts for garment detail extraction and wardrobe classification."""

DETAIL_ANALYSIS_PROMPT = """Analyze these clothing images and extract ONLY the most critical details for accurate reproduction.
Return ONLY valid JSON (no markdown, no code blocks, no extra text) in this exact format:

{
    "garments": [
        {
            "category": "shirt/t-shirt/jacket/pants/shoes/etc",
            "dominant_colors": ["color1", "color2"],
            "pattern": "solid/stripes/plaid/floral/etc",
            "material": "cotton/denim/wool/etc",
            "logos": [
                {
                    "text": "exact logo text if visible",
                    "position": "left chest/right sleeve/back/etc",
                    "color": "text color"
                }
            ],
            "hardware": ["button type", "zipper type", "etc"],
            "unique_details": ["detail1", "detail2"]
        }
    ]
}

Focus on: logo text (if any), logo position, pattern type and spacing, dominant colors (max 2), material, hardware/buttons.
Ignore minor decorative elements. Output ONLY the JSON object. No explanations, no markdown, no code blocks.
"""

GARMENT_CLASSIFICATION_PROMPT = """Analyze this clothing item for a digital wardrobe.

Determine:
1. Name: a short descriptive name (e.g. "Navy striped oxford shirt")
2. Category: one of top / jacket / coat / bottom / pants / dress / shoes / accessories
3. Tags: 2-5 short style or color tags

Return ONLY a valid JSON object with no additional text:
{
    "name": "...",
    "category": "...",
    "tags": ["...", "..."]
}
"""
