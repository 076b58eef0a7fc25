"""HTTP routers for the widget, agent conversations and chat sessions."""
