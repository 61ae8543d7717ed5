"""File operations for the audiobook organizer.

Submodules:
    organize -- PathTemplateEngine (template selection, %placeholder%
                substitution, two-digit padding of series positions and part
                numbers, sanitization with a 240-character ceiling) and
                FileOrganizer (copy/move into the library, same-size targets
                left alone, empty source dirs pruned after a move).
"""
