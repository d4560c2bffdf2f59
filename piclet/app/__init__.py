"""Qt-facing facade and state objects.

- Single command entry: backend.dispatch(cmd, payload)
- UI binding via state QObjects (backend.session)
- Python→UI notifications via backend.taskEvent(dict)
"""
