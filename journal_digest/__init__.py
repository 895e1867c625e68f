"""Weekly sentiment digest for journal users."""
