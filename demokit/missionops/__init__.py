"""Mission storage, the mission bot, status subscriptions and mission command handlers."""