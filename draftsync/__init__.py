"""DraftSync: document autosave, snapshot history and writing analytics."""
