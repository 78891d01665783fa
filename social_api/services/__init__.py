# Services package.
#
# Each module exposes a focused set of async functions that encapsulate
# the workflows for one collection and the back-references it touches:
#
#   post_service       — create / edit / delete / like for Post
#   comment_service    — create / edit / delete / like for Comment
#   user_service       — accounts, login and the follow graph
#   reconcile_service  — offline repair of back-reference sets
#
# All service functions accept an AsyncSession as their first argument
# so that the router layer controls the transaction boundary via the
# ``get_db`` dependency. Workflows that touch media also take the
# MediaStore resolved by ``get_media_store``.
