"""Job orchestration for the filesystem render watcher.

The inbox is a plain directory and a claim is a single ``rename`` into
``requests/processing/``, so several producers can drop jobs without a
broker. Claimed jobs run through an in-memory FIFO limiter against one
shared browser; every job ends with ``done.json`` written after all of its
other artifacts, which is the only signal clients wait on.
"""
