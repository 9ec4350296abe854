"""Session Recall - hybrid retrieval memory for conversational agents.

Stores a conversation's prior exchanges per session and retrieves the
most relevant ones by combining vector similarity with BM25 keyword
ranking.

Usage:
    from session_recall.memory.rag import RetrievalMemory

    memory = RetrievalMemory("session-1", embedder)
    await memory.add_message(create_message("user", "Deploy to staging"))
    context = await memory.get_context("where did we deploy?")

Command line:
    session-recall --store ./sessions inspect session-1
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
