"""
Token Ledger Model for the Liquidation Queue.

This module simulates the Cw20 token contracts the queue talks to: the stable
token bids are paid in and the collateral tokens being liquidated. The queue
itself never moves tokens; it returns Transfer instructions which the ledger
applies on its behalf.
"""


class TokenLedger:
    """
    Balances of every token, keyed by token and then by account.
    """

    def __init__(self):
        # Mapping of token -> {account -> balance}
        self.balances = {}

    def balance_of(self, token, account):
        """Returns the balance of an account in the given token."""
        return self.balances.get(token, {}).get(account, 0)

    def mint(self, token, recipient, amount):
        """
        Mints new tokens to the recipient account.

        Args:
            token: Address of the token
            recipient: Address receiving the minted tokens
            amount: Amount of tokens to mint

        Returns:
            True if successful
        """
        if amount <= 0:
            raise ValueError("Amount must be greater than zero")

        token_balances = self.balances.setdefault(token, {})
        token_balances[recipient] = token_balances.get(recipient, 0) + amount
        return True

    def transfer(self, token, sender, recipient, amount):
        """
        Transfers tokens from sender to recipient.

        Args:
            token: Address of the token
            sender: Address sending the tokens
            recipient: Address receiving the tokens
            amount: Amount of tokens to transfer

        Returns:
            True if successful
        """
        if amount <= 0:
            raise ValueError("Amount must be greater than zero")

        sender_balance = self.balance_of(token, sender)
        if sender_balance < amount:
            raise ValueError(f"Insufficient {token} balance for {sender}")

        token_balances = self.balances.setdefault(token, {})
        token_balances[sender] = sender_balance - amount
        token_balances[recipient] = token_balances.get(recipient, 0) + amount
        return True

    def apply(self, contract, response):
        """
        Executes the Transfer instructions of a queue Response.

        Args:
            contract: Address of the queue contract paying out
            response: Response returned by LiquidationQueue.execute

        Returns:
            The response, for chaining
        """
        for message in response.messages:
            self.transfer(message.token, contract, message.recipient, message.amount)
        return response
