"""Prompts for the AI enhancement calls."""

SYSTEM_PROMPT = """You are AutoMate Assistant, helping small retailers maintain their product catalog.
Always answer with valid JSON and nothing else."""

ENHANCE_PRODUCT_PROMPT = """Enhance the retail listing for: "{product_name}".
Provide a highly relevant category and 3 distinct marketing descriptions:
1. Professional/Corporate: Concise and formal.
2. Creative/Story-driven: Emotional and engaging.
3. Technical/Benefit-driven: Focused on specs and utility.

Respond as: {{"category": "<category>", "descriptions": ["<1>", "<2>", "<3>"]}}"""

BUSINESS_CATEGORIES_PROMPT = """Suggest 5 product categories for a {business_type} named "{business_name}".

Respond as: {{"categories": ["<category>", ...]}}"""

DEFAULT_CATEGORY = "General"
DEFAULT_BUSINESS_CATEGORIES = ["General", "Retail", "Services"]
