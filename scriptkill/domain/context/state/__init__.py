# State = everything needed to resume or audit a session's setup at a given moment.
#
# Current workflow step and whether it succeeded
#
# Script, roles and scenes bound so far
#
# The last error, in words a player may see
