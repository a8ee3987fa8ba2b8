"""services package"""

__all__ = [
    "class_id_generator",
    "classroom_store",
    "errors",
    "file_deposit",
    "file_storage",
    "message_id_generator",
    "message_pipeline",
    "session_auth",
    "ws_manager",
]
