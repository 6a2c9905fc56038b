# LocalChat — Local Assistant Engine
# Copyright (C) 2026 Pankaj Varma
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Prompt Templates for LocalChat
All LLM prompts are centralized here for easy management.
"""

# =============================================================================
# USER-FACING MESSAGES
# =============================================================================

GENERATION_ERROR_MESSAGE = (
    "Sorry, I encountered an error while generating a response. "
    "Please make sure Ollama is running and try again."
)


# =============================================================================
# DOCUMENT-GROUNDED ANSWER
# =============================================================================

GROUNDED_ANSWER_PROMPT = """
<role>
You are a helpful assistant. Use the provided CONTEXT to answer the user.
If the answer is not in the context, say you don't know.
</role>

<context>
{context}
</context>
{history_block}
<user_query>
{query}
</user_query>

ANSWER:"""


CONVERSATION_PROMPT = """
<role>
You are a helpful assistant continuing the conversation below.
</role>
{history_block}
<user_query>
{query}
</user_query>

ANSWER:"""


HISTORY_BLOCK = """
<conversation_history>
{history}
</conversation_history>
"""


# =============================================================================
# WEB SEARCH ANSWER
# =============================================================================

WEB_SEARCH_PROMPT = """
<role>
You are a research assistant. Answer the user's question using the web search results below.
</role>

<search_results>
{results}
</search_results>
{history_block}
<user_query>
{query}
</user_query>

<output_format>
Structure your answer in exactly three parts:
1. **Direct Answer** - answer the question in one or two sentences.
2. **Summary** - a short summary of what the sources say.
3. **Sources** - a list of the source titles and URLs you used.
If the results do not answer the question, say so in the Direct Answer.
</output_format>

ANSWER:"""


NO_SEARCH_RESULTS = "No search results were found for this query."


# =============================================================================
# PROMPT ENHANCEMENT
# =============================================================================

ENHANCE_PROMPT_TEMPLATE = """Please provide a comprehensive and detailed response to the following: {prompt}

Please include:
- Clear explanations
- Relevant examples
- Step-by-step guidance where applicable
- Best practices and recommendations"""


def enhance_prompt(prompt: str) -> str:
    """Wrap a terse prompt with instructions asking for a thorough answer."""
    return ENHANCE_PROMPT_TEMPLATE.format(prompt=prompt.strip())
