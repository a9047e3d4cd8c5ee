"""
Playwright code generator for Immortal Bard.

Keeps a running conversation with the selected provider so follow-up
instructions can refer to earlier ones.
"""

import logging
from typing import Optional, Union

from .adapters import LLMAdapter, Message
from .config import DEFAULT_TEMPERATURE, MAX_OUTPUT_TOKENS, BardSettings
from .errors import GenerationError, PreconditionError
from .providers import Provider, ProviderSpec, get_provider_spec, is_reasoning_model
from .utils import strip_code_fences


logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_TAG = "current_page_ai_snapshot"


class CodeGenerator:
    """Turns natural-language instructions into Playwright code."""

    SYSTEM_PROMPT = """You are an expert Playwright code generator.
Follow these rules strictly:
1. Generate only valid Playwright TypeScript code
2. Use async/await patterns
3. Include proper selectors (prefer data-testid, then CSS selectors)
4. Add error handling with try-catch where appropriate
5. Include comments for complex operations
6. Use page.waitForSelector() for dynamic content
7. Output only executable code, no markdown formatting or explanations
8. Assume 'page' variable is already available (don't create browser/context)
9. Be concise but complete
10. Handle potential timing issues with waitForSelector

AVAILABLE VARIABLES:
Your code has access to these Playwright objects:
- page: The current page instance (for DOM interactions, navigation, clicks, etc.)
- context: The browser context (for cookies, localStorage, sessionStorage)
- browser: The browser instance (for multi-page operations)

RETURNING DATA:
- ALWAYS use return statements when the user wants to extract data
- You can return primitives, objects, or arrays
- The returned value will be available in response.result
- Examples:
  * return await page.title();
  * return { title: await page.title(), url: page.url() };
  * return await page.$$eval('a', links => links.map(a => a.href));

ERROR HANDLING:
- Errors are automatically caught by the execution API
- Only use try-catch for graceful degradation within your code
- Don't wrap everything in try-catch unless handling specific error cases
- The API will return errors in response.error automatically

EXECUTION TIME:
- When the user message states "Available execution time: N seconds", the whole script must finish within N seconds
- Keep explicit waits and timeouts well inside that budget

PERFORMANCE:
- Your code runs directly in the browser's VM (no CDP overhead)
- This provides lower latency and higher throughput
- Ideal for data extraction, form automation, and quick operations

AI SNAPSHOT AWARENESS:
When the user provides a <current_page_ai_snapshot> block, you will receive an ARIA (accessibility) snapshot in YAML format.
This snapshot is generated using Playwright's _snapshotForAI() method and provides:
- Accessibility tree structure with roles, labels, and hierarchy
- More compact and AI-friendly format than raw HTML
- Element references that can be used to build robust selectors

Use this ARIA snapshot to:
1. Understand page structure and element relationships
2. Build role-based selectors (e.g., page.getByRole('button', { name: 'Submit' }))
3. Use accessibility attributes (aria-label, role) for more resilient selectors
4. Find elements by their accessible names and descriptions

When the user provides a <current_page_dom> block instead, you will receive a simplified DOM tree in JSON format
(tag, id, classes, selected attributes and short text per element). Use it the same way to pick selectors that exist on the page.

Prioritize selectors in this order when a page snapshot is available:
1. Role-based selectors with accessible names (page.getByRole())
2. data-testid attributes if present in snapshot
3. Label-based selectors (page.getByLabel())
4. Placeholder text selectors (page.getByPlaceholder())
5. Accessible descriptions and ARIA attributes
6. CSS selectors as fallback
7. XPath only as last resort

The page snapshot helps you generate more robust, accessibility-friendly automation code.

Example patterns:
// Navigation
await page.goto('https://example.com');
await page.waitForSelector('body');

// Data extraction with return
const links = await page.$$eval('a', elements =>
  elements.map(el => ({ text: el.textContent, href: el.href }))
);
return links;

// Using context for cookies
const cookies = await context.cookies();
return cookies;

// Form interaction
await page.fill('input[name="email"]', 'user@example.com');
await page.click('button[type="submit"]');
await page.waitForSelector('.success-message');
return await page.textContent('.success-message');
"""

    def __init__(
        self,
        openai_api_key: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
        settings: Optional[BardSettings] = None,
    ):
        """Initialize the code generator.

        Explicit keys win over the environment (OPENAI_API_KEY,
        ANTHROPIC_API_KEY, GOOGLE_API_KEY).
        """
        self.settings = settings or BardSettings.from_keys(
            openai_api_key=openai_api_key,
            anthropic_api_key=anthropic_api_key,
            google_api_key=google_api_key,
        )
        self.spec: Optional[ProviderSpec] = None
        self.model: Optional[str] = None
        self._client: Optional[LLMAdapter] = None
        self._history: list[Message] = []

    @property
    def provider(self) -> Optional[Provider]:
        return self.spec.provider if self.spec else None

    @property
    def conversation(self) -> list[Message]:
        """A copy of the conversation so far, system message first."""
        return list(self._history)

    def set_provider(self, provider: Union[str, Provider], model: Optional[str] = None) -> None:
        """Select the provider and model, clearing the conversation.

        Raises:
            ConfigurationError: If the provider is unknown or has no API key
        """
        spec = get_provider_spec(provider)
        client = spec.build_client(self.settings.api_key_for(spec.name), model)

        if self._client is not None:
            self._client.close()

        self.spec = spec
        self.model = spec.resolve_model(model)
        self._client = client
        self._history = [Message("system", self.SYSTEM_PROMPT)]
        logger.debug(f"Code generator using {spec.display_name} ({self.model})")

    def generation_temperature(self) -> Optional[float]:
        """Temperature to request, None when the model only accepts its default."""
        if self.model and is_reasoning_model(self.model):
            return None
        return DEFAULT_TEMPERATURE

    @staticmethod
    def build_user_message(
        instruction: str,
        context: Optional[str] = None,
        time_budget: Optional[int] = None,
        context_tag: str = DEFAULT_CONTEXT_TAG,
    ) -> str:
        """Compose the user message for one instruction."""
        message = instruction
        if time_budget is not None:
            message += f"\n\nAvailable execution time: {time_budget} seconds"
        if context:
            message += f"\n\n<{context_tag}>\n{context}\n</{context_tag}>"
        return message

    def generate(
        self,
        instruction: str,
        context: Optional[str] = None,
        time_budget: Optional[int] = None,
        context_tag: str = DEFAULT_CONTEXT_TAG,
    ) -> str:
        """Generate Playwright code for an instruction.

        Args:
            instruction: What to do, in natural language
            context: Formatted page context, if captured
            time_budget: Execution time available to the code, in seconds
            context_tag: Tag wrapping the context in the user message

        Returns:
            The generated code without markdown fences

        Raises:
            PreconditionError: If no provider has been selected
            GenerationError: If the provider call fails
        """
        if self._client is None:
            raise PreconditionError("Provider not set. Call set_provider() first.")

        user_message = Message(
            "user",
            self.build_user_message(instruction, context, time_budget, context_tag),
        )
        self._history.append(user_message)

        try:
            raw = self._client.chat_completion(
                list(self._history),
                temperature=self.generation_temperature(),
                max_tokens=MAX_OUTPUT_TOKENS,
            )
        except Exception as e:
            self._history.pop()
            raise GenerationError(str(e) or e.__class__.__name__) from e

        code = strip_code_fences(raw)
        self._history.append(Message("assistant", code))
        return code

    def reset_context(self) -> None:
        """Forget the conversation, keeping only the system message."""
        if self.spec is not None:
            self._history = [Message("system", self.SYSTEM_PROMPT)]

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
