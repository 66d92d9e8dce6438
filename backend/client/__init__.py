"""Client-side connection session for IdeaCollabHub"""
