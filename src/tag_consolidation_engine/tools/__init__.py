"""保守用のスタンドアロンCLI."""
