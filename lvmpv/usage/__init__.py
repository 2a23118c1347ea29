"""Anonymous usage reporting: sizes, ping period, cluster facts and events."""