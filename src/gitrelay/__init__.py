"""Issue and pull request comment triggered coding-agent runs on GitHub."""
