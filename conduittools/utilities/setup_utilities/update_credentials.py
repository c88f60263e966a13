from typing import Callable
import getpass
from conduittools.utilities.credentials import CredentialManager
import conduittools.configuration.constants as global_constants

def build_postgres_connstring(input_prompt: Callable[[str], str] = input) -> str:
    """Build a PostgreSQL connection string interactively"""
    print("Let's build your PostgreSQL connection string.")
    print("Default values will be shown in [brackets]. Press Enter to use them.")

    user = input_prompt("PostgreSQL username [conduit]: ").strip() or "conduit"
    password = input_prompt("PostgreSQL password: ").strip()
    host = input_prompt("Database host [localhost]: ").strip() or "localhost"
    port = input_prompt("Database port [5432]: ").strip() or "5432"
    db_name = input_prompt("Database name [conduit_mirror]: ").strip() or "conduit_mirror"

    return f"postgresql://{user}:{password}@{host}:{port}/{db_name}"

def update_credentials(
        input_prompt: Callable[[str], str] = input,
        password_prompt: Callable[[str], str] = getpass.getpass
    ):
    print("\nEncrypted Credential Update Script")
    print("=================================")
    print("This script will help you add, update or delete credentials for a conduit agent node.")
    print(f"Oracle API keys are stored as {global_constants.ORACLE_KEY_PREFIX}1, {global_constants.ORACLE_KEY_PREFIX}2, ...")
    print(f"Mirror connection strings are stored as <node_name>{global_constants.MIRROR_CONNSTRING_SUFFIX}")

    try:
        encryption_password = password_prompt("\nEnter your encryption password: ")
        cm = CredentialManager(encryption_password)

        existing_credentials = cm.list_credentials()

        print("\nStored credentials:")
        print("=====================")
        if not existing_credentials:
            print("(none)")
        for idx, cred_name in enumerate(existing_credentials, 1):
            print(f"{idx}. {cred_name}")

        print("\nOptions:")
        if existing_credentials:
            print("1-{}: Update a credential".format(len(existing_credentials)))
        print("A: Add a credential")
        print("D: Delete a credential")

        while True:
            selection = input_prompt("\nEnter your choice: ").strip().upper()

            if selection == 'A':
                selected_credential = input_prompt("Enter the new credential name: ").strip()
                if selected_credential:
                    break
                print("Credential name must not be empty.")
                continue

            if selection == 'D':
                try:
                    delete_idx = int(input_prompt("Enter the number of the credential to delete: ")) - 1
                except ValueError:
                    print("Please enter a valid number.")
                    continue
                if 0 <= delete_idx < len(existing_credentials):
                    to_delete = existing_credentials[delete_idx]
                    confirm = input_prompt(f"\nWARNING: Are you sure you want to delete '{to_delete}'? (y/N): ").strip().lower()
                    if confirm == 'y':
                        cm.delete_credential(to_delete)
                        print(f"\nSuccessfully deleted credential: {to_delete}")
                    else:
                        print("\nDeletion cancelled.")
                    return
                print("Invalid selection. Please try again.")
                continue

            try:
                selection_idx = int(selection) - 1
            except ValueError:
                print("Please enter a valid option.")
                continue
            if 0 <= selection_idx < len(existing_credentials):
                selected_credential = existing_credentials[selection_idx]
                break
            print("Invalid selection. Please try again.")

        # PostgreSQL connection strings are built from their parts
        if selected_credential.endswith(global_constants.MIRROR_CONNSTRING_SUFFIX):
            new_value = build_postgres_connstring(input_prompt)
        else:
            print(f"\nUpdating: {selected_credential}")
            new_value = password_prompt("Enter new value (input hidden): ").strip()

        if new_value:
            cm.enter_and_encrypt_credential({selected_credential: new_value})
            print(f"\nSuccessfully stored credential: {selected_credential}")
        else:
            print("\nUpdate cancelled - empty value provided.")

    except KeyboardInterrupt:
        print("\nOperation cancelled.")
        return

    except ValueError as e:
        print(f"\nError: {str(e)}")
        return

def main():
    update_credentials()

if __name__ == "__main__":
    main()
