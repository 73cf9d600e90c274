# chat.py — Chat turn coordination
# The singleton chat_state row is the turn lock: at most one Gemini request in
# flight across every connected session. A process that dies mid-turn leaves the
# lock held; there is no watchdog.
import logging
from typing import List, Optional

from cache import DashboardCache
from errors import ChatBusy, WriteFailure
from models import ChatRole
from schemas import ChatMessage

logger = logging.getLogger("iti-tech.chat")

AI_NAME = "Gemini AI"

SYSTEM_INSTRUCTION = (
    "Você é o assistente de IA da ITI Tech, integrado ao painel de tarefas da equipe. "
    "Várias pessoas participam da mesma conversa; cada linha do histórico começa com o nome de quem falou. "
    "Responda em português, de forma objetiva e cordial, dirigindo-se a quem fez a última pergunta. "
    "Ajude com planejamento de atividades, priorização, estimativas de horas e dúvidas técnicas."
)

APOLOGY = "Desculpe, não consegui processar sua mensagem no momento. Tente novamente mais tarde."


class ChatTurnCoordinator:
    """Runs one turn: claim lock, append user message, ask the model, append reply, release."""

    def __init__(self, cache: DashboardCache, ai_client, context_size: int = 10, conditional_claim: bool = False):
        self.cache = cache
        self.ai_client = ai_client
        self.context_size = context_size
        self.conditional_claim = conditional_claim

    def is_ai_configured(self) -> bool:
        return self.ai_client is not None and self.ai_client.is_configured()

    def _speaker_name(self, user_id: Optional[str]) -> str:
        user = self.cache.find_user(user_id)
        return user.name if user else "Usuário"

    def build_prompt(self, history: List[ChatMessage], speaker_id: str, content: str) -> List[str]:
        """Last `context_size` messages as "<name>: <text>" lines, then the new message."""
        window = history[-self.context_size:] if self.context_size > 0 else []
        lines = [
            f"{AI_NAME if m.role == ChatRole.MODEL else self._speaker_name(m.user_id)}: {m.content}"
            for m in window
        ]
        lines.append(f"{self._speaker_name(speaker_id)} (pergunta atual): {content}")
        return ["\n".join(lines)]

    async def send_turn(self, content: str, user_id: str) -> None:
        state = self.cache.get_chat_state()
        if state.is_locked:
            raise ChatBusy(state.locked_by_user_id)

        claimed = await self.cache.set_chat_lock(True, user_id, conditional=self.conditional_claim)
        if not claimed:
            raise ChatBusy(self.cache.get_chat_state().locked_by_user_id)
        logger.info(f"Chat lock claimed by {user_id}")

        try:
            # Context comes from history before this message, so the new text appears once
            history = list(self.cache.get_chat_messages())
            await self.cache.append_chat_message(ChatRole.USER, content, user_id)

            try:
                reply = await self.ai_client.generate(SYSTEM_INSTRUCTION, self.build_prompt(history, user_id, content))
            except Exception as e:
                logger.warning(f"Completion failed, sending apology: {e}")
                reply = APOLOGY

            await self.cache.append_chat_message(ChatRole.MODEL, reply, None)
        finally:
            try:
                await self.cache.set_chat_lock(False, None)
                logger.info(f"Chat lock released by {user_id}")
            except WriteFailure as e:
                logger.error(f"Chat lock release failed, lock may be stranded: {e.message}")
