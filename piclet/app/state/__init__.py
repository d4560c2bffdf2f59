from piclet.app.state.session_state import SessionStateObject

__all__ = ["SessionStateObject"]
