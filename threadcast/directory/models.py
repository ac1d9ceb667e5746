"""Tables owned by the profile and post services.

The comment engine only reads them: usernames to resolve ``@handle``
mentions, and posts to check that a comment targets something that exists.
"""

USERS_BY_USERNAME_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.users_by_username (
    username TEXT PRIMARY KEY,
    user_id UUID
)
"""

POSTS_TABLE_CQL = """
CREATE TABLE IF NOT EXISTS {keyspace}.posts (
    post_id UUID PRIMARY KEY,
    author_id UUID,
    created_at TIMESTAMP
)
"""

DIRECTORY_TABLES_CQL = [
    USERS_BY_USERNAME_TABLE_CQL,
    POSTS_TABLE_CQL,
]
