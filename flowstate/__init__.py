# FlowState: personal dashboard backend
#
# Packages:
#   todos/     - kanban to-do board (ordering, timers, persistence)
#   config.py  - YAML configuration
#   server.py  - Flask JSON API for the board
