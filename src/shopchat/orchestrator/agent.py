"""
Chat Orchestrator.

Main orchestration logic for the shop chat agent. Coordinates:
- The authorization gate for account-scoped requests
- Model calls with streaming
- Tool execution and result handling
- Conversation persistence
- Event delivery to clients
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..domain.entities import (
    ChatEvent,
    ContentBlock,
    FinalMessage,
    MessageRole,
    SessionContext,
    StoredMessage,
    TextBlock,
    ToolDefinition,
    ToolFailure,
    ToolInvocation,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
    WorkingHistory,
    normalize_content,
)
from ..domain.ports import IEventEmitter, IModelProvider, IToolGateway, StreamHandlers
from ..config import ToolConfig
from .auth_gate import AuthorizationGate, NeedsAuthorization
from .conversation_manager import ConversationManager
from .tool_executor import ToolExecutor

logger = logging.getLogger(__name__)


GatewayFactory = Callable[[SessionContext], IToolGateway]


@dataclass
class AgentConfig:
    """Configuration for the chat orchestrator.

    Attributes:
        max_turns: Maximum model invocations per user message
        await_persistence: Await each message write instead of detaching it
    """

    max_turns: int = 6
    await_persistence: bool = False


class ChatOrchestrator:
    """Main chat orchestration logic.

    Manages one session per user message:
    1. Check the authorization gate
    2. Open the tool gateway and discover tools
    3. Call the model with history and tools
    4. Execute tool calls and feed results back
    5. Repeat until the model ends its turn or max_turns is reached

    Usage:
        orchestrator = ChatOrchestrator(
            provider=anthropic_provider,
            gateway_factory=lambda ctx: MCPClient(...),
            conversations=ConversationManager(store),
            auth_gate=gate,
        )

        emitter = BufferedEventEmitter()
        await orchestrator.run(context, emitter)
        result = emitter.get_result()
    """

    def __init__(
        self,
        provider: IModelProvider,
        gateway_factory: GatewayFactory,
        conversations: Optional[ConversationManager] = None,
        auth_gate: Optional[AuthorizationGate] = None,
        tool_config: Optional[ToolConfig] = None,
        config: Optional[AgentConfig] = None,
    ):
        """Initialize the orchestrator.

        Args:
            provider: Model provider
            gateway_factory: Builds the tool gateway for a session
            conversations: Conversation persistence
            auth_gate: Authorization gate (None disables the gate)
            tool_config: Product search settings
            config: Orchestrator configuration
        """
        self.provider = provider
        self.gateway_factory = gateway_factory
        self.conversations = conversations or ConversationManager()
        self.auth_gate = auth_gate
        self.tool_config = tool_config or ToolConfig()
        self.config = config or AgentConfig()

    async def run(self, context: SessionContext, emitter: IEventEmitter) -> None:
        """Run a session to completion.

        Errors that escape the session are classified by the emitter; the
        emitter is always closed.
        """
        try:
            await self.handle_session(context, emitter)
        except Exception as e:
            logger.exception(f"Chat session {context.conversation_id} failed: {e}")
            await emitter.on_error(e)
        finally:
            await emitter.close()

    async def handle_session(
        self, context: SessionContext, emitter: IEventEmitter
    ) -> None:
        """Process one user message.

        Raises:
            ModelProviderError: If the model call fails
        """
        if self.auth_gate:
            decision = await self.auth_gate.evaluate(
                context.user_message, context.conversation_id, context.shop_id
            )
            if isinstance(decision, NeedsAuthorization):
                await self._request_authorization(context, emitter, decision)
                return

        await emitter.send(ChatEvent.id(context.conversation_id))

        async with self.gateway_factory(context) as gateway:
            tools = await self._discover_tools(gateway)

            history = WorkingHistory(
                conversation_id=context.conversation_id,
                turns=await self.conversations.load_history(context.conversation_id),
            )
            user_turn = history.append(
                Turn(role=MessageRole.USER, content=normalize_content(context.user_message))
            )
            await self._persist(context.conversation_id, user_turn)

            products = await self._turn_loop(context, emitter, gateway, tools, history)

        await emitter.send(ChatEvent.end_turn())
        if products:
            await emitter.send(ChatEvent.product_results(products))

    async def _request_authorization(
        self,
        context: SessionContext,
        emitter: IEventEmitter,
        decision: NeedsAuthorization,
    ) -> None:
        await emitter.send(ChatEvent.id(context.conversation_id))

        await self._persist(
            context.conversation_id,
            Turn(role=MessageRole.USER, content=normalize_content(context.user_message)),
        )
        await self._persist(
            context.conversation_id,
            Turn(role=MessageRole.ASSISTANT, content=[TextBlock(text=decision.prompt_text)]),
        )

        await emitter.send(ChatEvent.text_chunk(decision.prompt_text))
        await emitter.send(ChatEvent.message_complete())
        await emitter.send(ChatEvent.done())

    async def _discover_tools(self, gateway: IToolGateway) -> list[ToolDefinition]:
        try:
            tools = await gateway.connect()
        except Exception as e:
            logger.warning(f"Tool discovery failed, continuing without tools: {e}")
            return []
        logger.info(f"Session has {len(tools)} tools available")
        return tools

    async def _turn_loop(
        self,
        context: SessionContext,
        emitter: IEventEmitter,
        gateway: IToolGateway,
        tools: list[ToolDefinition],
        history: WorkingHistory,
    ) -> list[dict[str, Any]]:
        """Invoke the model until it ends its turn.

        Returns:
            Products collected from catalog search results
        """
        conversation_id = context.conversation_id
        executor = ToolExecutor(gateway, self.tool_config)
        products: list[dict[str, Any]] = []

        async def on_text(text: str) -> None:
            await emitter.send(ChatEvent.text_chunk(text))

        async def on_content_block(block: ContentBlock) -> None:
            if isinstance(block, TextBlock):
                await emitter.send(ChatEvent.content_block_complete(block))

        async def on_message(message: FinalMessage) -> None:
            turn = history.append(message.to_turn())
            await self._persist(conversation_id, turn)
            await emitter.send(ChatEvent.message_complete())

        async def on_tool_use(block: ToolUseBlock) -> None:
            invocation = ToolInvocation.from_block(block)
            await emitter.send(ChatEvent.tool_use(invocation.name, invocation.arguments))

            outcome = await executor.execute(invocation)
            if isinstance(outcome, ToolFailure):
                result = ToolResultBlock(
                    tool_use_id=invocation.call_id,
                    content=outcome.error_detail,
                    is_error=True,
                )
                if outcome.requires_authorization:
                    await emitter.send(ChatEvent.auth_required())
            else:
                result = ToolResultBlock(tool_use_id=invocation.call_id, content=outcome.payload)
                products.extend(outcome.display_items)

            turn = history.append(Turn(role=MessageRole.USER, content=[result]))
            await self._persist(conversation_id, turn)
            await emitter.send(ChatEvent.new_message())

        handlers = StreamHandlers(
            on_text=on_text,
            on_content_block=on_content_block,
            on_message=on_message,
            on_tool_use=on_tool_use,
        )

        for turn_number in range(1, self.config.max_turns + 1):
            final = await self.provider.invoke(
                history.turns, context.prompt_type, tools, handlers
            )
            logger.debug(
                f"Turn {turn_number} of {conversation_id} stopped: {final.stop_reason}"
            )

            if final.stop_reason is None or final.is_end_turn:
                break
        else:
            logger.warning(
                f"Conversation {conversation_id} reached max turns ({self.config.max_turns})"
            )

        return products

    async def _persist(self, conversation_id: str, turn: Turn) -> None:
        if self.config.await_persistence:
            await self.conversations.save(conversation_id, turn)
        else:
            self.conversations.persist(conversation_id, turn)

    async def get_conversation_history(self, conversation_id: str) -> list[StoredMessage]:
        """Get stored messages of a conversation, oldest first."""
        return await self.conversations.get_messages(conversation_id)
