"""feedsync: live-tail and history synchronization for chat feeds."""
