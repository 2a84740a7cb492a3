"""Royal Recipes. Turns a craving into a recipe, then illustrates and narrates it.

Why is this hard?

- Almost everything is produced by a generative model behind an api.
- The api rate limits, so every call retries and the step images are paced.
- Step images depend on every earlier step, so they have to go in order.
- Whoever asked for them may have moved on to another recipe by the time
  they arrive.

Nothing is stored. A recipe lives as long as the session that asked for it.
"""
