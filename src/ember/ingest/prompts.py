EXTRACTION_SYSTEM = """
You extract memories from a conversation for a personal AI memory system.
Respond ONLY with a JSON object, no preamble and no markdown.
"""

EXTRACTION_PROMPT = """
For each distinct piece of memorable information in the conversation, extract:

- factualContent: the concrete information (names, dates, decisions, preferences).
- emotionalSignificance: why someone would want this remembered, or null.
- category: exactly one of "emotional", "work", "hobbies", "relationships", "preferences".
- importance: integer 1 (trivial) to 5 (life-defining).
- verbatimText: the exact excerpt of the conversation the memory comes from.

Skip small talk and filler.

Output schema:
{{"memories": [{{"factualContent": "...", "emotionalSignificance": "... or null", "category": "...", "importance": 3, "verbatimText": "..."}}]}}

Conversation:
{conversation}
"""

VISION_PROMPT = """
The images are screenshots of one conversation, in order.
Read the conversation and extract memories from it.

For each distinct piece of memorable information, extract factualContent,
emotionalSignificance (or null), category (one of "emotional", "work",
"hobbies", "relationships", "preferences"), importance (integer 1-5) and
verbatimText (the exact words as they appear in the screenshot).

Output schema:
{"memories": [{"factualContent": "...", "emotionalSignificance": "... or null", "category": "...", "importance": 3, "verbatimText": "..."}]}
"""
