# Context engineering for the AI participants
#
# +---------------------------+
# |        Memory             |   (chromadb, per session + global)
# |---------------------------|
# | What a player said/heard  |
# | Clues and timeline        |
# +---------------------------+
#
# +---------------------------+
# |        State              |   (SessionContext snapshots)
# |---------------------------|
# | Current workflow step     |
# | Roles, scenes, errors     |
# +---------------------------+
#
#    \    /
#     \  /
#      \/
# +------------------------------+
# |           Context            |   (assembled per statement)
# |------------------------------|
# | Ranked memories for a query  |
# | Rendered as a prompt block   |
# +------------------------------+
#         |
#         v
#   [player agent]
