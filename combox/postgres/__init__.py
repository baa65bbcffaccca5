"""PostgreSQL repositories for sessions, users, bot tokens, keys, search and media."""