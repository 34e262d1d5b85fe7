# Task board: personal and team to-dos as a checklist and a kanban board
#
# Components:
#   schema.py      - Data model (Card, Column, Team, MemberProfile, Scope)
#   store.py       - SQLite persistence for columns and cards
#   teams.py       - Team membership, invite codes, member profiles
#   resolver.py    - Assignee name matching and @-mention helpers
#   reconciler.py  - Drag-and-drop state machine over one board
#   checklist.py   - Flat checklist view of the same cards
#   extraction.py  - Meeting transcript → proposed cards (hosted LLM)
#   config.py      - YAML configuration and logging setup
