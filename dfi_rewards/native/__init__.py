"""Native transaction signing for the reward bot's own address."""
