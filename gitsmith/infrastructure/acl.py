from typing import Any, Dict

from gitsmith.domain.keys import compute_message_id, verify_signature
from gitsmith.domain.models import Message


class MessageTranslator:
    """
    Anti-corruption layer that translates raw relay event JSON into verified Message instances.
    """

    @staticmethod
    def to_domain(raw_event: Dict[str, Any]) -> Message:
        """
        Transforms a raw relay event into a Message.

        Args:
            raw_event (Dict[str, Any]): The event object from an ["EVENT", sub_id, event] frame.

        Returns:
            Message: The verified domain message.

        Raises:
            ValueError: if a field is missing, the id does not match the content, or the signature is invalid.
        """
        if not isinstance(raw_event, dict):
            raise ValueError("Relay event must be a JSON object.")

        missing = [field for field in ("id", "pubkey", "created_at", "kind", "tags", "content", "sig") if field not in raw_event]
        if missing:
            raise ValueError(f"Relay event is missing fields: {', '.join(missing)}")

        # Pydantic rejects non-string tag elements and negative timestamps
        message = Message.model_validate(raw_event)

        expected_id = compute_message_id(message.pubkey, message.created_at, message.kind, message.tags, message.content)
        if expected_id != message.id:
            raise ValueError(f"Event id {message.id} does not match its content.")
        if not verify_signature(message.pubkey, message.id, message.sig):
            raise ValueError(f"Invalid signature on event {message.id}.")

        return message
