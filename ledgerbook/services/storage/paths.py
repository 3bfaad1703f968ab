"""
Document paths.

Everything a user owns lives under users/{uid}; transactions are nested
under the account they belong to.
"""


class CollectionPaths:
    @staticmethod
    def users() -> str:
        return "users"

    @staticmethod
    def user(user_id: str) -> str:
        return f"users/{user_id}"

    @staticmethod
    def accounts(user_id: str) -> str:
        return f"users/{user_id}/accounts"

    @staticmethod
    def account(user_id: str, account_id: str) -> str:
        return f"users/{user_id}/accounts/{account_id}"

    @staticmethod
    def transactions(user_id: str, account_id: str) -> str:
        return f"users/{user_id}/accounts/{account_id}/transactions"

    @staticmethod
    def transaction(user_id: str, account_id: str, transaction_id: str) -> str:
        return f"users/{user_id}/accounts/{account_id}/transactions/{transaction_id}"

    @staticmethod
    def categories(user_id: str) -> str:
        return f"users/{user_id}/categories"

    @staticmethod
    def category(user_id: str, category_id: str) -> str:
        return f"users/{user_id}/categories/{category_id}"

    @staticmethod
    def budgets(user_id: str) -> str:
        return f"users/{user_id}/budgets"

    @staticmethod
    def budget(user_id: str, budget_id: str) -> str:
        return f"users/{user_id}/budgets/{budget_id}"

    @staticmethod
    def audit_log(user_id: str) -> str:
        return f"users/{user_id}/auditLog"
